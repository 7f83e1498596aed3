"""Load and render the system prompt template.

Supports a two-layer override system:
  1. Personal overrides in ``~/.helmsman/instructions/`` (highest priority)
  2. Packaged defaults in ``helmsman/templates/``

``AGENTS.md`` in the working directory is appended to the prompt as project
specific instructions.
"""

from __future__ import annotations

import os
import platform
import sys
from datetime import datetime
from pathlib import Path
from typing import Mapping

from helmsman.logging import get_logger

log = get_logger(__name__)

_PERSONAL_DIR = Path("~/.helmsman/instructions").expanduser()
SYSTEM_PROMPT_TEMPLATE = "system_prompt.md"
AGENTS_FILENAME = "AGENTS.md"
AVAILABLE_TOOLS_INFO = (
    "File operations (read_file, write_file, edit_file, list_directory), "
    "search (grep) and shell command execution (run_shell_command). "
    "Full schemas are sent with each request."
)


class _SafeFormatDict(dict[str, str]):
    """Leave unknown placeholders untouched instead of raising KeyError."""

    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


class InstructionLoader:
    """Read and render instruction templates with personal-override support."""

    def __init__(
        self,
        base_dir: Path | str | None = None,
        personal_dir: Path | str | None = None,
    ):
        self.base_dir = self._resolve_base_dir(base_dir)
        self.personal_dir: Path = (
            Path(personal_dir).expanduser().resolve()
            if personal_dir is not None
            else _PERSONAL_DIR.resolve()
        )
        self._cache: dict[str, str] = {}

    @staticmethod
    def _resolve_base_dir(base_dir: Path | str | None) -> Path:
        if base_dir is not None:
            return Path(base_dir).expanduser().resolve()
        env_dir = os.getenv("HELMSMAN_INSTRUCTIONS_DIR")
        if env_dir:
            return Path(env_dir).expanduser().resolve()
        return (Path(__file__).resolve().parent / "templates").resolve()

    def _path(self, name: str) -> Path:
        personal = self.personal_dir / name
        if personal.is_file():
            return personal
        return self.base_dir / name

    def is_overridden(self, name: str) -> bool:
        return (self.personal_dir / name).is_file()

    def load(self, name: str) -> str:
        """Load instruction template content by filename."""
        cached = self._cache.get(name)
        if cached is not None:
            return cached

        path = self._path(name)
        if not path.is_file():
            raise FileNotFoundError(f"Instruction template not found: {path}")
        content = path.read_text(encoding="utf-8").strip()
        self._cache[name] = content
        return content

    def render(self, name: str, /, **variables: object) -> str:
        """Render template with ``str.format`` placeholder substitution."""
        template = self.load(name)
        values: Mapping[str, str] = {k: str(v) for k, v in variables.items()}
        return template.format_map(_SafeFormatDict(values))


def system_info() -> str:
    return f"Platform: {sys.platform} ({platform.machine()}), Python: {platform.python_version()}"


def load_agents_content(cwd: Path) -> str:
    path = cwd / AGENTS_FILENAME
    if not path.is_file():
        return ""
    try:
        text = path.read_text(encoding="utf-8").strip()
    except (OSError, UnicodeDecodeError) as e:
        log.warning("Cannot read AGENTS.md", error=str(e))
        return ""
    if not text:
        return ""
    return f"\n<project_specific_instructions>\n{text}\n</project_specific_instructions>"


def build_system_prompt(loader: InstructionLoader | None = None, cwd: Path | None = None) -> str:
    """Render the system prompt for the current directory."""
    loader = loader or InstructionLoader()
    cwd = cwd or Path.cwd()
    return loader.render(
        SYSTEM_PROMPT_TEMPLATE,
        current_directory=cwd,
        current_datetime=datetime.now().isoformat(timespec="seconds"),
        system_info=system_info(),
        available_tools=AVAILABLE_TOOLS_INFO,
        agents_content=load_agents_content(cwd),
    )
