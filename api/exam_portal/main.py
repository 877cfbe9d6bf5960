"""
Main FastAPI Application
Controller layer that wires the repositories, the session engine and the
report exporter to HTTP.
"""
import logging
import os
import threading
import time
import uuid
from enum import Enum
from functools import lru_cache
from typing import Callable, List, Literal, Optional
from urllib.parse import quote

from cachetools import TTLCache
from fastapi import Depends, FastAPI, File, HTTPException, Query, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, Response
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel

from exam_portal.config import (
    BASE_DIR,
    get_database_name,
    get_database_url,
    get_flag_store_path,
    get_session_limit,
    get_session_ttl_seconds,
    get_store_timeout_ms,
)
from exam_portal.errors import AuthFailure, ExamNotFound, FormatError, StoreUnavailable, ValidationError
from exam_portal.schemas import (
    AccountProfile,
    Exam,
    ExamKey,
    ExamKeySummary,
    ExamMetadataUpdate,
    ImportReport,
    Notice,
    Question,
    Result,
    SessionSnapshot,
    UserImportReport,
)
from exam_portal.services.accounts import AccountRepository
from exam_portal.services.questions import QuestionRepository
from exam_portal.services.reports import (
    DOCX_MEDIA_TYPE,
    MARKDOWN_MEDIA_TYPE,
    XLSX_MEDIA_TYPE,
    ReportExporter,
)
from exam_portal.services.results import ResultRepository
from exam_portal.services.session import ExamSession
from exam_portal.services.store import (
    DocumentStore,
    FlagStore,
    JsonFlagStore,
    MemoryDocumentStore,
    MongoDocumentStore,
)
from exam_portal.services.tabular import template_workbook

logger = logging.getLogger(__name__)

# Setup Paths
STATIC_DIR = BASE_DIR / "static"


# --- Service Wiring ---

@lru_cache
def get_document_store() -> DocumentStore:
    """MongoDB when DATABASE_URL is set, otherwise an in-memory store for local dev."""
    url = get_database_url()
    if not url:
        logger.warning("[Store] DATABASE_URL not set; using in-memory document store")
        return MemoryDocumentStore()
    return MongoDocumentStore(url, get_database_name(), timeout_ms=get_store_timeout_ms())


@lru_cache
def get_flag_store() -> FlagStore:
    return JsonFlagStore(get_flag_store_path())


def get_question_repository(
    store: DocumentStore = Depends(get_document_store),
    flags: FlagStore = Depends(get_flag_store),
) -> QuestionRepository:
    return QuestionRepository(store, flags)


def get_account_repository(store: DocumentStore = Depends(get_document_store)) -> AccountRepository:
    return AccountRepository(store)


def get_result_repository(store: DocumentStore = Depends(get_document_store)) -> ResultRepository:
    return ResultRepository(store)


def get_report_exporter(results: ResultRepository = Depends(get_result_repository)) -> ReportExporter:
    return ReportExporter(results)


class SessionRegistry:
    """
    In-process registry of running exam sessions.

    Sessions idle for longer than ttl seconds are dropped, and the oldest
    entries are evicted once maxsize sessions are held. Reading a session
    refreshes its lifetime.
    """

    def __init__(self, ttl: float = 3600, maxsize: int = 1000, timer: Callable[[], float] = time.monotonic):
        self._sessions: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl, timer=timer)
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            self._sessions.expire()
            return len(self._sessions)

    def add(self, session: ExamSession) -> str:
        session_id = uuid.uuid4().hex
        with self._lock:
            self._sessions[session_id] = session
        return session_id

    def get(self, session_id: str) -> ExamSession:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is not None:
                self._sessions[session_id] = session
        if session is None:
            raise HTTPException(status_code=404, detail="Session not found")
        return session

    def remove(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None


@lru_cache
def get_session_registry() -> SessionRegistry:
    return SessionRegistry(ttl=get_session_ttl_seconds(), maxsize=get_session_limit())


# --- Request / Response Models ---

class LoginRequest(BaseModel):
    username: str
    password: str


class StartSession(BaseModel):
    exam_id: str
    user_name: Optional[str] = None


class SelectOption(BaseModel):
    option_id: str


class SessionCommand(str, Enum):
    SUBMIT = "submit"
    NEXT = "next"
    PREV = "prev"
    RETRY = "retry"


class SessionAction(BaseModel):
    accepted: bool
    snapshot: SessionSnapshot


class ArchiveToggled(BaseModel):
    id: str
    archived: bool


class ExamKeysRequest(BaseModel):
    exams: List[str]


class ImportResponse(BaseModel):
    notice: Notice
    report: ImportReport


class UserImportResponse(BaseModel):
    notice: Notice
    report: UserImportReport


class DeleteResultsResponse(BaseModel):
    notice: Notice
    deleted: int


def error_detail(text: str) -> dict:
    return Notice(type="error", text=text).model_dump()


def parse_exam_keys(values: Optional[List[str]]) -> List[ExamKey]:
    try:
        return [ExamKey.parse(value) for value in values or []]
    except ValueError as e:
        raise HTTPException(status_code=422, detail=error_detail(str(e)))


def content_disposition(filename: str) -> str:
    """
    Attachment header safe for any file name.

    Header values must be latin-1, so non-ASCII names (e.g. Thai student
    names) go in the RFC 5987 ``filename*`` parameter with an ASCII fallback.
    """
    fallback = "".join(
        char if char.isascii() and char.isprintable() and char not in '"\\' else "_"
        for char in filename
    )
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename, safe='')}"


def download(content, filename: str, media_type: str) -> Response:
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": content_disposition(filename)},
    )


# Initialize FastAPI App
app = FastAPI(
    title="Exam Portal API",
    description="Practice exams, bulk spreadsheet import and result reports",
    version="1.0.0"
)

# CORS Middleware (Allow all origins for development)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Mount Static Files
if os.path.exists(STATIC_DIR):
    app.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")


@app.exception_handler(StoreUnavailable)
async def store_unavailable_handler(request, exc: StoreUnavailable):
    return JSONResponse(
        status_code=503,
        content={"detail": error_detail("The database is unavailable. Please try again.")},
    )


@app.exception_handler(AuthFailure)
async def auth_failure_handler(request, exc: AuthFailure):
    return JSONResponse(status_code=401, content={"detail": error_detail(str(exc))})


@app.exception_handler(ExamNotFound)
async def exam_not_found_handler(request, exc: ExamNotFound):
    return JSONResponse(status_code=404, content={"detail": error_detail(f"Exam not found: {exc}")})


@app.get("/")
async def read_root():
    """Return API status info (UI is served separately)."""
    index_path = STATIC_DIR / "index.html"
    if index_path.exists():
        return FileResponse(str(index_path))
    return {"message": "Exam Portal API is running."}


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "Exam Portal API"}


# --- Auth ---

@app.post("/auth/login", response_model=AccountProfile)
def login(payload: LoginRequest, accounts: AccountRepository = Depends(get_account_repository)):
    account = accounts.authenticate(payload.username, payload.password)
    if account is None:
        raise AuthFailure()
    return AccountProfile(username=account.username, name=account.name, role=account.role)


# --- Exams ---

@app.get("/exams", response_model=List[Exam], response_model_by_alias=True)
def list_exams(questions: QuestionRepository = Depends(get_question_repository)):
    return questions.list_exams()


@app.get("/exams/{exam_id}/questions", response_model=List[Question], response_model_by_alias=True)
def list_questions(exam_id: str, questions: QuestionRepository = Depends(get_question_repository)):
    return questions.get_exam_questions(exam_id)


@app.post("/admin/exams/upload", response_model=ImportResponse)
def upload_questions(
    file: UploadFile = File(..., description="Question spreadsheet (.xlsx)"),
    questions: QuestionRepository = Depends(get_question_repository),
):
    """
    Import questions from a spreadsheet, one exam per ExamID.

    Returns:
        A success notice and the import report (including skipped rows).
    """
    content = file.file.read()
    try:
        report = questions.import_questions(content)
    except FormatError as e:
        logger.error(f"[Import] Unreadable question file {file.filename}: {e}")
        raise HTTPException(
            status_code=422,
            detail=error_detail("Failed to parse or upload file. Please check the format."),
        )
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=error_detail(str(e)))

    notice = Notice(
        type="success",
        text=f"Successfully uploaded {report.question_count} questions across {len(report.exam_ids)} exam(s)!",
    )
    return ImportResponse(notice=notice, report=report)


@app.put("/admin/exams/{exam_id}", response_model=Exam, response_model_by_alias=True)
def save_exam(exam_id: str, exam: Exam, questions: QuestionRepository = Depends(get_question_repository)):
    return questions.upsert_exam(exam_id, exam)


@app.patch("/admin/exams/{exam_id}", response_model=Exam, response_model_by_alias=True)
def edit_exam(
    exam_id: str,
    changes: ExamMetadataUpdate,
    questions: QuestionRepository = Depends(get_question_repository),
):
    return questions.update_exam_metadata(exam_id, changes)


@app.post("/admin/exams/{exam_id}/archive", response_model=ArchiveToggled)
def toggle_archive(exam_id: str, questions: QuestionRepository = Depends(get_question_repository)):
    return ArchiveToggled(id=exam_id, archived=questions.toggle_archive(exam_id))


@app.delete("/admin/exams/{exam_id}")
def delete_exam(exam_id: str, questions: QuestionRepository = Depends(get_question_repository)):
    if not questions.delete_exam(exam_id):
        raise HTTPException(status_code=404, detail=error_detail(f"Exam not found: {exam_id}"))
    return {"id": exam_id, "deleted": True}


@app.get("/admin/templates/{kind}")
def download_template(kind: str):
    """Blank upload workbook with headers and example rows ("questions" or "users")."""
    try:
        filename, content = template_workbook(kind)
    except KeyError as e:
        raise HTTPException(status_code=404, detail=error_detail(e.args[0]))
    return download(content, filename, XLSX_MEDIA_TYPE)


# --- Users ---

@app.post("/admin/users/upload", response_model=UserImportResponse)
def upload_users(
    file: UploadFile = File(..., description="User spreadsheet (.xlsx)"),
    accounts: AccountRepository = Depends(get_account_repository),
):
    content = file.file.read()
    try:
        report = accounts.import_users_file(content)
    except (FormatError, ValidationError) as e:
        raise HTTPException(status_code=422, detail=error_detail(f"Failed: {e}"))

    notice = Notice(type="success", text=f"Successfully imported {report.imported} users!")
    return UserImportResponse(notice=notice, report=report)


# --- Results ---

@app.get("/admin/results", response_model=List[Result], response_model_by_alias=True)
def list_results(
    exam: Optional[List[str]] = Query(default=None, description="Exam keys such as 2024-Mathematics"),
    results: ResultRepository = Depends(get_result_repository),
):
    return results.list_by_exam_keys(parse_exam_keys(exam))


@app.get("/users/{username}/results", response_model=List[Result], response_model_by_alias=True)
def list_user_results(username: str, results: ResultRepository = Depends(get_result_repository)):
    """A student's own attempts, newest first."""
    return results.list_by_user(username)


@app.get("/admin/results/exams", response_model=List[ExamKeySummary])
def list_result_exams(results: ResultRepository = Depends(get_result_repository)):
    return results.unique_exam_keys()


@app.get("/admin/results/count")
def count_results(results: ResultRepository = Depends(get_result_repository)):
    return {"count": results.count_all()}


@app.post("/admin/results/delete", response_model=DeleteResultsResponse)
def delete_results(payload: ExamKeysRequest, results: ResultRepository = Depends(get_result_repository)):
    keys = parse_exam_keys(payload.exams)
    if not keys:
        raise HTTPException(
            status_code=422,
            detail=error_detail("Please select at least one exam to delete results for."),
        )
    deleted = results.delete_by_exam_keys(keys)
    notice = Notice(type="success", text=f"Successfully deleted {deleted} result records.")
    return DeleteResultsResponse(notice=notice, deleted=deleted)


@app.get("/admin/results/export")
def export_results(
    format: Literal["xlsx", "md"] = Query(default="xlsx"),
    exam: Optional[List[str]] = Query(default=None, description="Exam keys such as 2024-Mathematics"),
    exporter: ReportExporter = Depends(get_report_exporter),
):
    keys = parse_exam_keys(exam)
    try:
        if format == "md":
            filename, text = exporter.export_markdown(keys)
            return download(text.encode("utf-8"), filename, MARKDOWN_MEDIA_TYPE)
        filename, content = exporter.export_table(keys)
        return download(content, filename, XLSX_MEDIA_TYPE)
    except ValidationError as e:
        raise HTTPException(status_code=404, detail=error_detail(str(e)))


@app.get("/results/{result_id}/export")
def export_result(
    result_id: str,
    format: Literal["xlsx", "md", "docx"] = Query(default="xlsx"),
    results: ResultRepository = Depends(get_result_repository),
    exporter: ReportExporter = Depends(get_report_exporter),
):
    result = results.get(result_id)
    if result is None:
        raise HTTPException(status_code=404, detail=error_detail("Result not found"))

    if format == "md":
        filename, text = exporter.export_single_markdown(result)
        return download(text.encode("utf-8"), filename, MARKDOWN_MEDIA_TYPE)
    if format == "docx":
        filename, content = exporter.export_single_docx(result)
        return download(content, filename, DOCX_MEDIA_TYPE)
    filename, content = exporter.export_single_table(result)
    return download(content, filename, XLSX_MEDIA_TYPE)


# --- Exam Sessions ---

@app.post("/sessions", response_model=SessionSnapshot, response_model_by_alias=True, status_code=201)
def start_session(
    payload: StartSession,
    questions: QuestionRepository = Depends(get_question_repository),
    results: ResultRepository = Depends(get_result_repository),
    registry: SessionRegistry = Depends(get_session_registry),
):
    exam = questions.get_exam(payload.exam_id)
    session = ExamSession(exam, payload.user_name or "Anonymous", questions, results)
    session.load()
    session_id = registry.add(session)
    return session.snapshot(session_id)


@app.get("/sessions/{session_id}", response_model=SessionSnapshot, response_model_by_alias=True)
def get_session(session_id: str, registry: SessionRegistry = Depends(get_session_registry)):
    return registry.get(session_id).snapshot(session_id)


@app.post("/sessions/{session_id}/select", response_model=SessionAction, response_model_by_alias=True)
def select_option(
    session_id: str,
    payload: SelectOption,
    registry: SessionRegistry = Depends(get_session_registry),
):
    session = registry.get(session_id)
    accepted = session.select_option(payload.option_id)
    return SessionAction(accepted=accepted, snapshot=session.snapshot(session_id))


@app.post("/sessions/{session_id}/{action}", response_model=SessionAction, response_model_by_alias=True)
def session_action(
    session_id: str,
    action: SessionCommand,
    registry: SessionRegistry = Depends(get_session_registry),
):
    """
    Apply a navigation action. Illegal actions are answered with accepted=false.

    A failed save after the last question returns 503 and leaves the session
    on that question, so the client can retry "next".
    """
    session = registry.get(session_id)
    accepted = getattr(session, action.value)()
    return SessionAction(accepted=accepted, snapshot=session.snapshot(session_id))


@app.delete("/sessions/{session_id}")
def end_session(session_id: str, registry: SessionRegistry = Depends(get_session_registry)):
    if not registry.remove(session_id):
        raise HTTPException(status_code=404, detail="Session not found")
    return {"id": session_id, "ended": True}


if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
