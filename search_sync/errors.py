"""
Error taxonomy for the search index sync worker.

Every error a sync pass can raise derives from ``SearchSyncError``.
The orchestrator fills in ``entity_type``, ``phase`` and ``offset`` before
re-raising so the runner can report where a pass stopped.
"""

from typing import Any, Dict, List, Optional, Sequence


class SearchSyncError(Exception):
    """Base class for sync failures."""

    def __init__(self, message: str, *, entity_type: Optional[str] = None,
                 phase: Optional[str] = None, offset: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.entity_type = entity_type
        self.phase = phase
        self.offset = offset

    def annotate(self, entity_type: str, phase: str, offset: int) -> "SearchSyncError":
        # keep the innermost context if a nested component already set it
        if self.entity_type is None:
            self.entity_type = entity_type
        if self.phase is None:
            self.phase = phase
        if self.offset is None:
            self.offset = offset
        return self

    def context(self) -> Dict[str, Any]:
        return {
            "entity_type": self.entity_type,
            "phase": self.phase,
            "offset": self.offset,
        }

    def __str__(self) -> str:
        parts = [self.message]
        ctx = [f"{k}={v}" for k, v in self.context().items() if v is not None]
        if ctx:
            parts.append(f"({', '.join(ctx)})")
        return " ".join(parts)


class TransientIndexError(SearchSyncError):
    """Index service unavailable or too slow; re-running the pass may succeed."""


class DocumentSubmissionError(TransientIndexError):
    """A document sub-batch could not be submitted."""

    def __init__(self, message: str, *, tasks: Sequence[Any] = (),
                 batch_ids: Sequence[Any] = (), **kwargs):
        super().__init__(message, **kwargs)
        self.tasks = list(tasks)
        self.batch_ids = list(batch_ids)


class TaskWaitTimeoutError(TransientIndexError):
    """Tasks were still pending after the retry budget was spent."""

    def __init__(self, message: str, *, task_uids: Sequence[int] = (), **kwargs):
        super().__init__(message, **kwargs)
        self.task_uids = list(task_uids)


class SchemaConflictError(SearchSyncError):
    """Index exists with an incompatible primary key. Needs an operator."""


class TerminalTaskFailureError(SearchSyncError):
    """The index service permanently rejected one or more tasks."""

    def __init__(self, message: str, *, task_uids: Sequence[int] = (),
                 errors: Optional[List[Dict[str, Any]]] = None,
                 batch_ids: Optional[Dict[int, List[Any]]] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.task_uids = list(task_uids)
        self.errors = errors or []
        self.batch_ids = batch_ids or {}


class StoreReadError(SearchSyncError):
    """Relational read failed."""


class IndexServiceError(SearchSyncError):
    """Non-transient error response from the index service."""

    def __init__(self, message: str, *, status_code: Optional[int] = None,
                 code: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.status_code = status_code
        self.code = code


class DocumentShapeError(SearchSyncError):
    """A transformed document does not match its declared schema."""

    def __init__(self, message: str, *, document_id: Any = None,
                 field: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.document_id = document_id
        self.field = field
