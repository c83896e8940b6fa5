"""
Shared review session storage using JSON files.
Allows main.py and server.py to share sales pack sessions.

Each session is a JSON file next to a copy of its source PDF:
    {session_id}.json
    {session_id}.pdf
"""
import os
import re
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from state import PageClassification, Partition, SalesPackState, UploadSummary

logger = logging.getLogger(__name__)

DEFAULT_STORAGE_DIR = Path(__file__).parent / "storage" / "sales_packs"

_SESSION_ID_RE = re.compile(r"^[A-Za-z0-9_\-]+$")


def storage_dir() -> Path:
    """Session directory (SALES_PACK_STORAGE_DIR overrides the default)."""
    path = Path(os.getenv("SALES_PACK_STORAGE_DIR") or DEFAULT_STORAGE_DIR)
    path.mkdir(parents=True, exist_ok=True)
    return path


def _session_file(session_id: str, suffix: str) -> Path:
    if not _SESSION_ID_RE.match(session_id or ""):
        raise ValueError(f"Invalid session id: {session_id!r}")
    return storage_dir() / f"{session_id}{suffix}"


# ============================================================================
# Serialisation
# ============================================================================

def session_to_json(session: SalesPackState) -> Dict[str, Any]:
    """
    Convert a session to a JSON-serializable dict.

    Output documents hold PDF bytes and are not persisted; they are
    recreated from the source PDF and partition whenever needed.
    """
    data: Dict[str, Any] = {}
    for key, value in session.items():
        if value is None or key == "output_documents":
            continue
        if key == "partition":
            data[key] = value.to_dict()
        elif key == "page_classifications":
            data[key] = [c.to_dict() for c in value]
        elif key == "upload_summary":
            data[key] = value.to_dict()
        else:
            data[key] = value
    return data


def session_from_json(data: Dict[str, Any]) -> SalesPackState:
    session: SalesPackState = dict(data)  # type: ignore[assignment]
    if "partition" in data:
        session["partition"] = Partition.from_dict(data["partition"])
    if "page_classifications" in data:
        session["page_classifications"] = [
            PageClassification.from_dict(c) for c in data["page_classifications"]
        ]
    if "upload_summary" in data:
        session["upload_summary"] = UploadSummary.from_dict(data["upload_summary"])
    return session


# ============================================================================
# Sessions
# ============================================================================

def save_session(session: SalesPackState) -> None:
    """Save a session to disk."""
    session_id = session["session_id"]
    file_path = _session_file(session_id, ".json")

    with open(file_path, 'w') as f:
        json.dump(session_to_json(session), f, indent=2, default=str)

    logger.debug(f"Saved session {session_id} to {file_path}")


def load_session(session_id: str) -> Optional[SalesPackState]:
    """Load a session from disk."""
    file_path = _session_file(session_id, ".json")

    if not file_path.exists():
        return None

    with open(file_path, 'r') as f:
        return session_from_json(json.load(f))


def list_sessions() -> List[SalesPackState]:
    """List all sessions from disk."""
    sessions = []

    for file_path in sorted(storage_dir().glob("*.json")):
        try:
            with open(file_path, 'r') as f:
                sessions.append(session_from_json(json.load(f)))
        except (OSError, ValueError, KeyError) as e:
            logger.warning(f"Error loading {file_path}: {e}")

    return sessions


def delete_session(session_id: str) -> bool:
    """Delete a session and its source PDF from disk."""
    file_path = _session_file(session_id, ".json")

    if not file_path.exists():
        return False

    file_path.unlink()
    pdf_path = _session_file(session_id, ".pdf")
    if pdf_path.exists():
        pdf_path.unlink()

    logger.info(f"Deleted session {session_id}")
    return True


# ============================================================================
# Source PDFs
# ============================================================================

def save_source_pdf(session_id: str, pdf_bytes: bytes) -> str:
    """Store the uploaded sales pack; returns its path."""
    file_path = _session_file(session_id, ".pdf")
    file_path.write_bytes(pdf_bytes)
    return str(file_path)


def load_source_pdf(session_id: str) -> Optional[bytes]:
    file_path = _session_file(session_id, ".pdf")
    if not file_path.exists():
        return None
    return file_path.read_bytes()
