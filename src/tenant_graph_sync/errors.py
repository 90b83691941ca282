"""
Exception hierarchy for the synchronization engine.

Only connectivity failures, schema violations and exhausted write retries
are meant to terminate a run. Mapping errors and write conflicts are
recovered per record and surface as counters in the run summary.
"""

from typing import Any, Dict, List, Optional


class SyncError(Exception):
    """Base class for all engine errors."""


class StoreConnectionError(SyncError):
    """A source or graph store could not be reached."""

    def __init__(self, store: str, message: str):
        self.store = store
        super().__init__(f"{store}: {message}")


class SchemaViolation(SyncError):
    """A constraint could not be created because existing data violates it."""

    def __init__(
        self,
        constraint_name: str,
        sample: Optional[List[Dict[str, Any]]] = None,
        cause: Optional[BaseException] = None,
    ):
        self.constraint_name = constraint_name
        self.sample = sample or []
        self.cause = cause
        super().__init__(
            f"Constraint '{constraint_name}' is violated by existing data "
            f"({len(self.sample)} sample group(s))"
        )


class MappingError(SyncError):
    """A single source row could not be converted into a node specification."""

    def __init__(self, entity_type: str, row_key: Any, reason: str):
        self.entity_type = entity_type
        self.row_key = row_key
        self.reason = reason
        super().__init__(f"{entity_type} row {row_key!r}: {reason}")


class WriteConflictError(SyncError):
    """The graph store rejected a write because of a constraint violation."""


class TransientStoreError(SyncError):
    """A retryable failure such as a timeout or a dropped connection."""


class RetriesExhaustedError(SyncError):
    """A batch kept failing with transient errors until the retry budget ran out."""

    def __init__(
        self,
        attempts: int,
        cause: Optional[BaseException] = None,
        entity_type: Optional[str] = None,
        last_confirmed_offset: Optional[int] = None,
    ):
        self.attempts = attempts
        self.cause = cause
        self.entity_type = entity_type
        self.last_confirmed_offset = last_confirmed_offset
        where = f" for {entity_type}" if entity_type else ""
        offset = (
            f"; last confirmed batch offset {last_confirmed_offset}"
            if last_confirmed_offset is not None
            else ""
        )
        super().__init__(
            f"Batch write{where} failed after {attempts} attempt(s): {cause}{offset}"
        )
