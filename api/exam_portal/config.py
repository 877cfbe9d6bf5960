"""
Configuration Module for Exam Portal
Centralizes environment variables, store settings, and upload templates.
"""
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parents[2]

# --- Import / Export Defaults ---
DEFAULT_EXAM_ID = "custom-exam"
DEFAULT_EXPLANATION = "No explanation provided."
DEFAULT_IMPORTED_SUBJECT = "Custom Exam"

PASS_THRESHOLD = 70
FAIR_THRESHOLD = 50
SINGLE_PASS_THRESHOLD = 50

# --- Collections ---
EXAMS_COLLECTION = "exams"
USERS_COLLECTION = "users"
RESULTS_COLLECTION = "exam_results"

ARCHIVED_EXAMS_KEY = "archived_exams"
DELETED_BUILTIN_KEY = "deleted_builtin_exams"


def get_database_url(required: bool = False) -> Optional[str]:
    """
    Returns the MongoDB connection string.

    Args:
        required: Raise instead of returning None when no URL is configured.

    Raises:
        ValueError: If required is set and DATABASE_URL is not found in environment.
    """
    # Load environment variables fresh (for testing and reload scenarios)
    load_dotenv()
    url = os.getenv("DATABASE_URL")

    if not url and required:
        raise ValueError(
            "DATABASE_URL not found. "
            "Please create a .env file with your MongoDB connection string."
        )
    return url or None


def get_database_name() -> str:
    load_dotenv()
    return os.getenv("DATABASE_NAME", "exam_portal")


def get_store_timeout_ms() -> int:
    """Timeout applied to every MongoDB round trip."""
    load_dotenv()
    return int(os.getenv("STORE_TIMEOUT_MS", "5000"))


def get_flag_store_path() -> Path:
    load_dotenv()
    raw = os.getenv("FLAG_STORE_PATH")
    return Path(raw) if raw else BASE_DIR / "data" / "flags.json"


def get_session_ttl_seconds() -> float:
    """Idle time after which a running exam session is forgotten."""
    load_dotenv()
    return float(os.getenv("SESSION_TTL_SECONDS", "3600"))


def get_session_limit() -> int:
    """Maximum number of exam sessions held in memory per worker."""
    load_dotenv()
    return int(os.getenv("SESSION_LIMIT", "1000"))


def get_failsafe_credentials() -> tuple[str, str]:
    """
    Returns the recovery administrator credentials.

    The recovery account authenticates even when the account store is empty
    or unreachable.
    """
    load_dotenv()
    return (
        os.getenv("FAILSAFE_ADMIN_USERNAME", "admin"),
        os.getenv("FAILSAFE_ADMIN_PASSWORD", "admin123"),
    )


# --- Upload Templates ---
UPLOAD_TEMPLATES = {
    "questions": {
        "filename": "question-upload-template.xlsx",
        "sheet": "Template",
        "headers": [
            "ExamID", "Question", "OptionA", "OptionB", "OptionC", "OptionD",
            "CorrectAnswer", "Explanation",
        ],
        "rows": [
            ["math-2024", "What is 2 + 2?", "3", "4", "5", "6", "b", "Basic arithmetic."],
        ],
    },
    "users": {
        "filename": "user_import_template.xlsx",
        "sheet": "Users",
        "headers": ["Username", "Password", "Name", "Role"],
        "rows": [
            ["student101", "pass123", "Alice Chen", "student"],
            ["admin2", "securePass", "Vice Principal", "admin"],
        ],
    },
}


def get_upload_template(kind: str) -> dict:
    """
    Retrieves the upload template definition for a given import format.

    Args:
        kind: Template kind ("questions" or "users").

    Returns:
        Dict with filename, sheet title, header row and example rows.

    Raises:
        KeyError: If kind is not found in templates.
    """
    if kind not in UPLOAD_TEMPLATES:
        raise KeyError(f"Upload template '{kind}' not found.")

    return UPLOAD_TEMPLATES[kind]
