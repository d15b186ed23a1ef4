"""Evaluation orchestration.

Drives prompt generation, answering and scoring across frameworks and
loops, reporting progress over an event channel.

Public API (the "studs"):
    EvaluationOrchestrator: Runs evaluations
    RunHandle: Handle to a started run
    RunConfig: Input of a run
    RunSummary: Outcome of a run
    EventChannel: Progress event stream
    ResultStore: Persistence protocol
    FileResultStore: File-based ResultStore
    load_run_file: Build a RunConfig from YAML
    safe_call: Never-raising retry wrapper around one model call
"""

from .events import (
    CancelledEvent,
    DoneEvent,
    ErrorEvent,
    Event,
    EventChannel,
    LogEvent,
    StateUpdateEvent,
    UpdateEvent,
)
from .file_store import FileResultStore
from .loader import load_knowledge_dir, load_run_file, load_test_cases
from .models import (
    Framework,
    FrameworkProperty,
    FrameworkResult,
    KnowledgeFile,
    ModelSelection,
    ProjectContext,
    ResultRow,
    RoleParams,
    RunConfig,
    RunConfigError,
    RunSummary,
    TerminationPolicy,
    TestCase,
)
from .orchestrator import EvaluationOrchestrator, RunHandle, threshold_predicate
from .safe_call import SafeCallResult, safe_call
from .store import ResultStore, ResultStoreError

__all__ = [
    # Orchestration
    "EvaluationOrchestrator",
    "RunHandle",
    "threshold_predicate",
    "safe_call",
    "SafeCallResult",
    # Models
    "RunConfig",
    "RunConfigError",
    "RunSummary",
    "ProjectContext",
    "KnowledgeFile",
    "Framework",
    "FrameworkProperty",
    "FrameworkResult",
    "TestCase",
    "ModelSelection",
    "RoleParams",
    "TerminationPolicy",
    "ResultRow",
    # Events
    "Event",
    "EventChannel",
    "LogEvent",
    "UpdateEvent",
    "StateUpdateEvent",
    "DoneEvent",
    "CancelledEvent",
    "ErrorEvent",
    # Persistence
    "ResultStore",
    "ResultStoreError",
    "FileResultStore",
    "load_run_file",
    "load_test_cases",
    "load_knowledge_dir",
]
