"""File-based ResultStore implementation.

Layout under the base directory::

    <YYMMDD_HHMMSS>/<loop>/<framework name>/<framework name>.md
    <YYMMDD_HHMMSS>/<loop>/<framework name>/results.json

Public API (the "studs"):
    FileResultStore: ResultStore writing markdown and JSON files
"""

from __future__ import annotations

import json
import logging
import os
import re
from datetime import datetime
from pathlib import Path

from .models import Framework, ResultRow
from .store import ResultStoreError

_logger = logging.getLogger(__name__)

# Word characters (any script), spaces, dots and hyphens are kept
_UNSAFE_CHARS = re.compile(r"[^\w .-]")


def _sanitize_name(name: str) -> str:
    """Turn a framework name into a single safe path component.

    Raises:
        ValueError: If nothing usable remains
    """
    safe = _UNSAFE_CHARS.sub("_", name).strip().lstrip(".")
    if not safe:
        raise ValueError(f"Name cannot be used as a path component: {name!r}")
    return safe


def run_timestamp(now: datetime | None = None) -> str:
    """Run id in ``YYMMDD_HHMMSS`` form."""
    return (now or datetime.now()).strftime("%y%m%d_%H%M%S")


def _write_atomic(path: Path, text: str) -> None:
    tmp = path.with_name(path.name + ".tmp")
    try:
        tmp.write_text(text, encoding="utf-8")
    except (OSError, UnicodeError):
        tmp.unlink(missing_ok=True)
        raise
    os.replace(tmp, path)


class FileResultStore:
    """Stores run output as files in a timestamped run directory.

    Every write replaces the target file atomically, so a reader never sees
    a half-written results file.
    """

    def __init__(self, base_dir: Path | None = None) -> None:
        """Initialize FileResultStore.

        Args:
            base_dir: Parent of run directories. Defaults to ./output/result
        """
        if base_dir is None:
            base_dir = Path.cwd() / "output" / "result"
        self._base_dir = Path(base_dir)
        self._run_dir: Path | None = None

    @property
    def run_dir(self) -> Path | None:
        return self._run_dir

    async def open_run(self) -> str:
        run_id = run_timestamp()
        run_dir = self._base_dir / run_id
        try:
            run_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ResultStoreError(f"Cannot create run directory {run_dir}: {e}") from e
        self._run_dir = run_dir
        _logger.debug("Created run directory %s", run_dir)
        return run_id

    def _framework_dir(self, loop: int, framework: Framework) -> Path:
        if self._run_dir is None:
            raise ResultStoreError("open_run must be called before writing results")
        try:
            name = _sanitize_name(framework.name)
        except ValueError as e:
            raise ResultStoreError(str(e)) from e
        path = self._run_dir / str(loop) / name
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ResultStoreError(f"Cannot create directory {path}: {e}") from e
        return path

    async def save_system_prompt(self, loop: int, framework: Framework, prompt: str) -> None:
        directory = self._framework_dir(loop, framework)
        path = directory / f"{directory.name}.md"
        try:
            _write_atomic(path, prompt)
        except (OSError, UnicodeError) as e:
            raise ResultStoreError(f"Cannot write {path}: {e}") from e
        _logger.debug("Saved system prompt to %s", path)

    async def write_framework_results(
        self, loop: int, framework: Framework, rows: list[ResultRow]
    ) -> None:
        path = self._framework_dir(loop, framework) / "results.json"
        data = json.dumps([row.model_dump() for row in rows], indent=2, ensure_ascii=False)
        try:
            _write_atomic(path, data)
        except (OSError, UnicodeError) as e:
            raise ResultStoreError(f"Cannot write {path}: {e}") from e
        _logger.debug("Wrote %d result rows to %s", len(rows), path)

    def load_framework_results(self, loop: int, framework_name: str) -> list[ResultRow]:
        """Read back the rows written for a framework in a loop (empty if none)."""
        if self._run_dir is None:
            return []
        path = self._run_dir / str(loop) / _sanitize_name(framework_name) / "results.json"
        if not path.exists():
            return []
        raw = json.loads(path.read_text(encoding="utf-8"))
        return [ResultRow.model_validate(item) for item in raw]


__all__ = ["FileResultStore", "run_timestamp"]
