"""Session files: the message log saved as a JSON list."""

import json
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from helmsman.exceptions import SessionLoadError
from helmsman.logging import get_logger
from helmsman.messages import Message, dump_messages, parse_messages

log = get_logger(__name__)

DEFAULT_SESSION_FILE = "session.json"


def save_session(path: Path | str, messages: list[Message]) -> Path:
    """Write ``messages`` to ``path`` as indented JSON."""
    session_path = Path(path).expanduser()
    session_path.parent.mkdir(parents=True, exist_ok=True)
    with open(session_path, "w", encoding="utf-8") as f:
        json.dump(dump_messages(messages), f, indent=2, ensure_ascii=False)
    log.info("Session saved", path=str(session_path), messages=len(messages))
    return session_path


def load_session(path: Path | str) -> list[Message]:
    """Read and validate a session file.

    Accepts either a bare list of messages or an object with a ``messages``
    list.

    Raises:
        SessionLoadError: when the file is missing, unreadable or invalid
    """
    session_path = Path(path).expanduser()
    if not session_path.is_file():
        raise SessionLoadError(str(session_path), "file not found")

    try:
        with open(session_path, encoding="utf-8") as f:
            data: Any = json.load(f)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise SessionLoadError(str(session_path), str(e)) from e

    if isinstance(data, dict):
        data = data.get("messages")
    if not isinstance(data, list):
        raise SessionLoadError(str(session_path), "expected a list of messages")

    try:
        messages = parse_messages(data)
    except ValidationError as e:
        raise SessionLoadError(str(session_path), f"invalid message: {e.errors()[0]['msg']}") from e

    log.info("Session loaded", path=str(session_path), messages=len(messages))
    return messages
