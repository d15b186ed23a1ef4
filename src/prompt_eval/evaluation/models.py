"""Evaluation run data models.

The input of a run (project context, frameworks, test cases, model choice
and termination policy) and its outputs (result rows and the run summary).

Public API (the "studs"):
    RunConfig: Everything one evaluation run needs
    ResultRow: One graded question
    RunSummary: Outcome of a run
    RunConfigError: Malformed run configuration
"""

from __future__ import annotations

import json
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..llm.types import GenerationParams

# Total loops allowed in score-threshold mode
DEFAULT_MAX_LOOPS = 10
DEFAULT_QUESTION_DELAY_SECONDS = 1.5


class RunConfigError(ValueError):
    """The run configuration is malformed. Aborts the run."""

    pass


class KnowledgeFile(BaseModel):
    """A named knowledge document included in the project context."""

    name: str = Field(..., description="File name shown to the prompt model")
    content: str = Field(..., description="File text")


class ProjectContext(BaseModel):
    """Background material the prompt model builds system prompts from."""

    name: str = Field(..., description="Project name")
    background: str = Field(default="", description="Free-text project background")
    knowledge: list[KnowledgeFile] = Field(default_factory=list, description="Knowledge files")
    mcp_tools: list[dict[str, Any]] = Field(
        default_factory=list, description="MCP tool definitions available to the work model"
    )

    def render(self) -> str:
        """Render the context as the markdown block given to the prompt model."""
        parts = [f"# Project: {self.name}\n\n## Background\n{self.background}\n\n"]
        for doc in self.knowledge:
            parts.append(f"## Knowledge file: {doc.name}\n{doc.content}\n\n")
        tools = json.dumps(self.mcp_tools, indent=2, ensure_ascii=False)
        parts.append(f"## Available tools (MCP)\n```json\n{tools}\n```")
        return "".join(parts)


class FrameworkProperty(BaseModel):
    """One building block of a prompt framework."""

    name: str
    description: str = ""


class Framework(BaseModel):
    """A named prompt-construction template."""

    id: str = Field(..., description="Framework identifier")
    name: str = Field(..., description="Display name, also used for result paths")
    description: str = Field(default="", description="What the framework is for")
    properties: list[FrameworkProperty] = Field(default_factory=list)


class TestCase(BaseModel):
    """One question of the battery.

    Accepts the stored shape ``{id, question, answer, score}`` where
    ``score`` is the maximum score.
    """

    __test__ = False

    model_config = ConfigDict(populate_by_name=True)

    id: int | str = Field(..., description="Question identifier")
    question: str = Field(..., description="Question put to the work model")
    reference_answer: str = Field(..., alias="answer", description="Reference answer")
    max_score: int = Field(..., alias="score", ge=0, description="Maximum score")


class ModelSelection(BaseModel):
    """Model ids for the three roles of a run."""

    prompt: str = Field(..., description="Model that writes system prompts")
    work: str = Field(..., description="Model that answers questions")
    score: str = Field(..., description="Model that grades answers")


class RoleParams(BaseModel):
    """Generation params per role."""

    prompt: GenerationParams = Field(default_factory=GenerationParams)
    work: GenerationParams = Field(default_factory=GenerationParams)
    score: GenerationParams = Field(default_factory=GenerationParams)


class TerminationPolicy(BaseModel):
    """When a run stops.

    ``loop`` mode runs exactly ``loop_count`` loops. ``threshold`` mode runs
    up to ``max_loops`` loops and stops early once the stop predicate is met.
    """

    mode: Literal["loop", "threshold"] = "loop"
    loop_count: int = Field(default=1, ge=1, description="Loops in loop mode")
    score_threshold: float | None = Field(default=None, ge=0, description="Early-stop score")
    max_loops: int = Field(default=DEFAULT_MAX_LOOPS, ge=1, description="Threshold mode loop cap")

    @model_validator(mode="after")
    def check_threshold(self) -> TerminationPolicy:
        if self.mode == "threshold" and self.score_threshold is None:
            raise ValueError("score_threshold is required in threshold mode")
        return self

    @property
    def loops(self) -> int:
        return self.loop_count if self.mode == "loop" else self.max_loops


class RunConfig(BaseModel):
    """Input of one evaluation run."""

    project: ProjectContext
    frameworks: list[Framework] = Field(..., description="Known frameworks")
    selected_frameworks: list[str] = Field(
        default_factory=list, description="Framework ids to evaluate, in order (all if empty)"
    )
    test_cases: list[TestCase] = Field(..., min_length=1)
    models: ModelSelection
    model_params: RoleParams = Field(default_factory=RoleParams)
    termination: TerminationPolicy = Field(default_factory=TerminationPolicy)
    question_delay_seconds: float = Field(default=DEFAULT_QUESTION_DELAY_SECONDS, ge=0)
    safe_call_retries: int = Field(default=2, ge=0, description="Safe-call retries per stage")
    safe_call_delay_seconds: float = Field(default=2.0, ge=0)

    model_config = ConfigDict(protected_namespaces=())

    @model_validator(mode="after")
    def check_selection(self) -> RunConfig:
        known = {f.id for f in self.frameworks}
        unknown = [fid for fid in self.selected_frameworks if fid not in known]
        if unknown:
            raise ValueError(f"Unknown framework ids: {', '.join(unknown)}")
        if not self.frameworks:
            raise ValueError("At least one framework is required")
        return self

    def selected(self) -> list[Framework]:
        """Frameworks to evaluate, in selection order."""
        if not self.selected_frameworks:
            return list(self.frameworks)
        by_id = {f.id: f for f in self.frameworks}
        return [by_id[fid] for fid in self.selected_frameworks]

    def total_tasks(self) -> int:
        """loops x frameworks x (1 prompt + 2 per question)."""
        per_framework = 1 + 2 * len(self.test_cases)
        return self.termination.loops * len(self.selected()) * per_framework


class ResultRow(BaseModel):
    """One graded question, as persisted."""

    id: int | str
    question: str
    reference_answer: str
    model_answer: str
    max_score: int
    score: int
    error: str | None = None


class FrameworkResult(BaseModel):
    """All rows for one framework in one loop."""

    loop: int
    framework: str
    system_prompt: str | None = None
    rows: list[ResultRow] = Field(default_factory=list)
    skipped: bool = False

    @property
    def total_score(self) -> int:
        return sum(row.score for row in self.rows)

    @property
    def max_total(self) -> int:
        return sum(row.max_score for row in self.rows)


class RunSummary(BaseModel):
    """Outcome of a run."""

    run_id: str | None = None
    status: Literal["done", "cancelled", "error"]
    message: str = ""
    total_tasks: int = 0
    completed_tasks: int = 0
    loops_completed: int = 0
    results: list[FrameworkResult] = Field(default_factory=list)


__all__ = [
    "RunConfigError",
    "KnowledgeFile",
    "ProjectContext",
    "FrameworkProperty",
    "Framework",
    "TestCase",
    "ModelSelection",
    "RoleParams",
    "TerminationPolicy",
    "RunConfig",
    "ResultRow",
    "FrameworkResult",
    "RunSummary",
    "DEFAULT_MAX_LOOPS",
    "DEFAULT_QUESTION_DELAY_SECONDS",
]
