"""
Smoke Flow
Drives the configured app end to end: health, CORS, template round trip,
one exam attempt and the result exports.

Runs against DATABASE_URL when set, otherwise the in-memory store.
"""
from __future__ import annotations

import os
import re
from typing import Any, Dict

from dotenv import load_dotenv
from fastapi.testclient import TestClient

from exam_portal.main import app

DEFAULT_ORIGIN = "http://localhost:3000"
SMOKE_USER = "smoke-test"


def parse_filename(content_disposition: str) -> str:
    match = re.search(r"filename=([^;]+)", content_disposition)
    if not match:
        raise SystemExit("Could not parse filename from content-disposition")
    return match.group(1).strip().strip('"')


def assert_json_response(response, label: str) -> Dict[str, Any]:
    if response.status_code not in (200, 201):
        raise SystemExit(f"{label} failed: {response.status_code} {response.text}")
    if "application/json" not in response.headers.get("content-type", ""):
        raise SystemExit(f"{label} did not return JSON")
    return response.json()


def take_exam(client: TestClient, exam_id: str) -> Dict[str, Any]:
    """Answers every question with its first option and returns the final snapshot."""
    snapshot = assert_json_response(
        client.post("/sessions", json={"exam_id": exam_id, "user_name": SMOKE_USER}), "/sessions"
    )
    session_id = snapshot["sessionId"]
    while snapshot["state"] == "answering":
        option_id = snapshot["question"]["options"][0]["id"]
        client.post(f"/sessions/{session_id}/select", json={"option_id": option_id})
        client.post(f"/sessions/{session_id}/submit")
        body = assert_json_response(client.post(f"/sessions/{session_id}/next"), "next")
        snapshot = body["snapshot"]
    if snapshot["state"] != "finished":
        raise SystemExit(f"Session ended in state {snapshot['state']}")
    return snapshot


def main() -> None:
    load_dotenv()
    origin = os.getenv("EXAM_PORTAL_ORIGIN", DEFAULT_ORIGIN)

    client = TestClient(app)

    # Connectivity Check: /health
    health_body = assert_json_response(client.get("/health", headers={"Origin": origin}), "/health")
    if health_body.get("status") != "healthy":
        raise SystemExit("/health did not report healthy")

    # CORS Validation
    cors_response = client.options(
        "/health",
        headers={
            "Origin": origin,
            "Access-Control-Request-Method": "GET",
        },
    )
    cors_origin = cors_response.headers.get("access-control-allow-origin")
    if cors_origin not in ("*", origin):
        raise SystemExit(f"CORS header mismatch: {cors_origin}")

    # Template Round Trip: download the question template and upload it back
    template = client.get("/admin/templates/questions")
    if template.status_code != 200:
        raise SystemExit(f"Template download failed: {template.status_code}")
    filename = parse_filename(template.headers.get("content-disposition", ""))
    upload = assert_json_response(
        client.post("/admin/exams/upload", files={"file": (filename, template.content)}),
        "/admin/exams/upload",
    )
    exam_id = upload["report"]["exam_ids"][0]

    # Exam Attempt
    final = take_exam(client, exam_id)
    result = final["result"]
    print(f"Attempt saved: {result['id']} ({result['score']}/{result['totalQuestions']})")

    # Exports
    for fmt in ("xlsx", "md", "docx"):
        response = client.get(f"/results/{result['id']}/export", params={"format": fmt})
        if response.status_code != 200:
            raise SystemExit(f"{fmt} export failed: {response.status_code}")
        print(f"Exported {parse_filename(response.headers['content-disposition'])} ({len(response.content)} bytes)")

    bulk = client.get("/admin/results/export", params={"format": "xlsx"})
    if bulk.status_code != 200:
        raise SystemExit(f"Bulk export failed: {bulk.status_code}")

    print("Smoke flow passed.")


if __name__ == "__main__":
    main()
