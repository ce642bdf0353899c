#!/usr/bin/env python3
"""
Upload Manuals and Ask Questions

Streams one or more manuals through the ManualQA upload endpoint, printing
progress as it arrives, then optionally asks a question about each.

Usage:
    python scripts/ingest_manual.py manual.pdf --user alice
    python scripts/ingest_manual.py docs/*.pdf --ocr --ask "What is the max pressure?"
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

import httpx

DEFAULT_API_URL = "http://localhost:8001"
TIMEOUT = 300.0
CONTENT_TYPES = {".pdf": "application/pdf", ".txt": "text/plain"}


def log_info(msg: str) -> None:
    print(f"ℹ {msg}")


def log_success(msg: str) -> None:
    print(f"✓ {msg}")


def log_error(msg: str) -> None:
    print(f"✗ {msg}")


def check_api(api_url: str) -> bool:
    try:
        r = httpx.get(f"{api_url}/health", timeout=5.0)
        return r.status_code == 200
    except httpx.RequestError:
        return False


def upload_manual(
    api_url: str,
    user_id: str,
    filepath: Path,
    force_recognition: bool,
) -> str | None:
    """Stream one upload; return the new document id, or None on failure."""
    content_type = CONTENT_TYPES.get(filepath.suffix.lower(), "application/octet-stream")
    document_id: str | None = None

    try:
        with filepath.open("rb") as f:
            with httpx.stream(
                "POST",
                f"{api_url}/api/v1/documents/stream",
                files={"file": (filepath.name, f, content_type)},
                data={"force_recognition": str(force_recognition).lower()},
                headers={"X-User-Id": user_id},
                timeout=TIMEOUT,
            ) as r:
                if r.status_code != 200:
                    r.read()
                    log_error(f"Failed {filepath.name}: {r.status_code} - {r.text}")
                    return None

                for line in r.iter_lines():
                    if not line:
                        continue
                    event = json.loads(line)
                    if event["type"] == "progress":
                        print(f"  [{event['percent']:3d}%] {event['message']}")
                    elif event["type"] == "complete":
                        document = event["document"]
                        document_id = document["id"]
                        log_success(
                            f"Ingested {filepath.name} "
                            f"({document.get('chunks_count', 0)} chunks, "
                            f"{document.get('strategy')})"
                        )
                    else:
                        error = event["error"]
                        log_error(f"Failed {filepath.name}: {error['message']}")
                        for tip in error.get("tips", []):
                            print(f"    - {tip}")

    except httpx.RequestError as e:
        log_error(f"Failed {filepath.name}: {e}")
        return None

    return document_id


def ask(api_url: str, user_id: str, document_id: str, question: str, k: int) -> bool:
    try:
        r = httpx.post(
            f"{api_url}/api/v1/documents/{document_id}/ask",
            json={"query": question, "k": k},
            headers={"X-User-Id": user_id},
            timeout=60.0,
        )
    except httpx.RequestError as e:
        log_error(f"Ask failed: {e}")
        return False

    if r.status_code != 200:
        log_error(f"Ask failed: {r.status_code} - {r.text}")
        return False

    data = r.json()
    print(f"\n  Q: {question}\n  A: {data['answer']}\n")
    for source in data["sources"]:
        print(f"    #{source['chunk_index']} ({source['score']:.3f}) {source['preview']}")
    return True


def main() -> int:
    parser = argparse.ArgumentParser(description="Upload manuals to ManualQA")
    parser.add_argument("files", nargs="+", type=Path, help="PDF or TXT manuals")
    parser.add_argument("--user", default="local-user", help="X-User-Id to upload as")
    parser.add_argument("--api-url", default=DEFAULT_API_URL, help="API base URL")
    parser.add_argument("--ocr", action="store_true", help="Force OCR on PDFs")
    parser.add_argument("--ask", dest="question", help="Question to ask each manual")
    parser.add_argument("-k", type=int, default=5, help="Chunks to retrieve")

    args = parser.parse_args()
    api_url = args.api_url

    print("\n📘 ManualQA Uploader\n")

    if not check_api(api_url):
        log_error(f"API not available at {api_url}")
        return 1
    log_success("API connected")

    failures = 0
    for filepath in args.files:
        if not filepath.exists():
            log_error(f"File not found: {filepath}")
            failures += 1
            continue

        log_info(f"Uploading {filepath.name}...")
        document_id = upload_manual(api_url, args.user, filepath, args.ocr)
        if document_id is None:
            failures += 1
            continue

        if args.question and not ask(api_url, args.user, document_id, args.question, args.k):
            failures += 1

    print()
    if failures:
        log_error(f"{failures} of {len(args.files)} uploads failed")
        return 1
    log_success(f"Processed {len(args.files)} manuals")
    return 0


if __name__ == "__main__":
    sys.exit(main())
