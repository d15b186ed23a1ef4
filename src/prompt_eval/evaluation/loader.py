"""Build a RunConfig from a YAML run file.

Run file shape::

    project:
      name: Support bot
      background: ...
      knowledge_dir: knowledge        # optional, relative to the run file
      knowledge: [{name, content}]    # optional inline documents
      mcp_tools: [...]                # optional
    frameworks: [{id, name, description, properties: [{name, description}]}]
    selected_frameworks: [crispe]     # optional, all frameworks if omitted
    test_cases: [{id, question, answer, score}]
    test_cases_file: checks.json      # alternative: {"checks": [...]}
    models: {prompt: ..., work: ..., score: ...}
    model_params: {prompt: {...}, work: {...}, score: {...}}
    termination: {mode: loop, loop_count: 3}

Public API (the "studs"):
    load_run_file: Parse and validate a run file
    load_test_cases: Read test cases from a JSON file
    load_knowledge_dir: Read every file of a knowledge directory
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from .models import KnowledgeFile, RunConfig, RunConfigError, TestCase

_logger = logging.getLogger(__name__)


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise RunConfigError(f"Run file not found: {path}")
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise RunConfigError(f"Invalid YAML in run file: {e}") from e
    except OSError as e:
        raise RunConfigError(f"Cannot read run file {path}: {e}") from e
    if not isinstance(data, dict):
        raise RunConfigError("Run file must contain a YAML mapping (dict)")
    return data


def load_test_cases(path: Path | str) -> list[TestCase]:
    """Read test cases from JSON.

    Accepts ``{"checks": [...]}`` or a bare list of cases.

    Raises:
        RunConfigError: If the file is missing or malformed
    """
    path = Path(path)
    if not path.exists():
        raise RunConfigError(f"Test case file not found: {path}")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise RunConfigError(f"Invalid JSON in test case file: {e}") from e
    except (OSError, UnicodeDecodeError) as e:
        raise RunConfigError(f"Cannot read test case file {path}: {e}") from e

    checks = data.get("checks") if isinstance(data, dict) else data
    if not isinstance(checks, list):
        raise RunConfigError("Test case file must hold a 'checks' list")
    try:
        return [TestCase.model_validate(item) for item in checks]
    except ValidationError as e:
        raise RunConfigError(f"Invalid test case in {path}: {e}") from e


def load_knowledge_dir(directory: Path | str) -> list[KnowledgeFile]:
    """Read every regular file in a directory, sorted by name.

    A missing directory yields no documents and a warning.

    Raises:
        RunConfigError: If a file cannot be read as UTF-8 text
    """
    directory = Path(directory)
    if not directory.is_dir():
        _logger.warning("Knowledge directory not found or unreadable: %s", directory)
        return []
    docs = []
    for file in sorted(directory.iterdir()):
        if not file.is_file():
            continue
        try:
            content = file.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise RunConfigError(f"Cannot read knowledge file {file}: {e}") from e
        docs.append(KnowledgeFile(name=file.name, content=content))
    return docs


def load_run_file(path: Path | str) -> RunConfig:
    """Parse a YAML run file into a validated RunConfig.

    Relative ``knowledge_dir`` and ``test_cases_file`` paths resolve against
    the run file's directory.

    Raises:
        RunConfigError: If the file or anything it references is invalid
    """
    path = Path(path)
    data = _load_yaml(path)
    base = path.parent

    project = dict(data.get("project") or {})
    knowledge_dir = project.pop("knowledge_dir", None)
    if knowledge_dir:
        docs = load_knowledge_dir(base / knowledge_dir)
        project["knowledge"] = list(project.get("knowledge") or []) + [d.model_dump() for d in docs]
    data["project"] = project

    cases_file = data.pop("test_cases_file", None)
    if cases_file:
        if data.get("test_cases"):
            raise RunConfigError("Use either test_cases or test_cases_file, not both")
        data["test_cases"] = load_test_cases(base / cases_file)

    try:
        return RunConfig.model_validate(data)
    except ValidationError as e:
        raise RunConfigError(f"Invalid run file {path}: {e}") from e


__all__ = ["load_run_file", "load_test_cases", "load_knowledge_dir"]
