"""
Repository pattern for session log access.

Enumerates session files on local storage and hands them to the analysis
as line streams. Files are read lazily and never modified.

Layout under the data directory:
    projects/<project>/<session>.jsonl
    projects/<project>/<session>/subagents/*.jsonl
    history.jsonl
    .credentials.json
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Union

from claude_spend.core.billing import load_credential_record

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = Path.home() / ".claude"


@dataclass
class SessionSource:
    """One session's line stream plus the line streams of its subagents."""
    project: str
    session_id: str
    lines: Iterable[str]
    subagent_lines: List[Iterable[str]] = field(default_factory=list)


class _LazyLines:
    """Re-iterable view of a file's lines, opened on each iteration.

    An unreadable file yields no lines.
    """

    def __init__(self, path: Path):
        self.path = path

    def __iter__(self) -> Iterator[str]:
        try:
            with open(self.path, "r", encoding="utf-8", errors="replace") as f:
                for line in f:
                    yield line
        except OSError as e:
            logger.debug("Skipping unreadable file %s: %s", self.path, e)


class LocalSessionRepository:
    """Repository for session logs stored under a local data directory.

    This class provides a higher-level interface to the on-disk layout,
    so the analysis only ever sees SessionSource objects.
    """

    def __init__(self, data_dir: Union[str, Path, None] = None):
        """Initialize the repository with a data directory.

        Args:
            data_dir: Root of the session data (defaults to ~/.claude)
        """
        self.data_dir = Path(data_dir) if data_dir is not None else DEFAULT_DATA_DIR

    @property
    def projects_dir(self) -> Path:
        return self.data_dir / "projects"

    @property
    def history_path(self) -> Path:
        return self.data_dir / "history.jsonl"

    @property
    def credentials_path(self) -> Path:
        return self.data_dir / ".credentials.json"

    def list_sessions(self) -> List[SessionSource]:
        """Enumerate every session file in sorted project/session order.

        Returns:
            SessionSource list (empty when the projects directory is missing)
        """
        if not self.projects_dir.is_dir():
            logger.info("No projects directory at %s", self.projects_dir)
            return []

        sources = []
        try:
            project_dirs = sorted(p for p in self.projects_dir.iterdir() if p.is_dir())
        except OSError as e:
            logger.warning("Cannot list %s: %s", self.projects_dir, e)
            return []

        for project_dir in project_dirs:
            try:
                session_files = sorted(project_dir.glob("*.jsonl"))
            except OSError as e:
                logger.debug("Skipping unreadable project %s: %s", project_dir, e)
                continue
            for session_file in session_files:
                session_id = session_file.stem
                sources.append(SessionSource(
                    project=project_dir.name,
                    session_id=session_id,
                    lines=_LazyLines(session_file),
                    subagent_lines=[
                        _LazyLines(path)
                        for path in self._subagent_files(project_dir / session_id)
                    ],
                ))
        return sources

    def _subagent_files(self, session_dir: Path) -> List[Path]:
        subagents_dir = session_dir / "subagents"
        if not subagents_dir.is_dir():
            return []
        try:
            return sorted(subagents_dir.glob("*.jsonl"))
        except OSError as e:
            logger.debug("Skipping unreadable subagents dir %s: %s", subagents_dir, e)
            return []

    def load_first_prompts(self) -> Dict[str, str]:
        """Map session id to its first meaningful prompt from the history index.

        Short slash commands are not meaningful prompts and are skipped.
        """
        prompts: Dict[str, str] = {}
        for line in _LazyLines(self.history_path):
            try:
                entry = json.loads(line)
            except ValueError:
                continue
            if not isinstance(entry, dict):
                continue
            session_id = entry.get("sessionId")
            display = entry.get("display")
            if not isinstance(session_id, str) or not isinstance(display, str):
                continue
            if not session_id or session_id in prompts:
                continue
            display = display.strip()
            if not display or (display.startswith("/") and len(display) < 30):
                continue
            prompts[session_id] = display
        return prompts

    def load_credentials(self) -> Optional[dict]:
        """Credential record, or None if absent or malformed."""
        return load_credential_record(self.credentials_path)
