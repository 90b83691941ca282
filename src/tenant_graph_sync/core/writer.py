"""
Idempotent batch upserts into the graph store.
"""

import logging
import time
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from ..database.interface import GraphStore
from ..database.models import BatchResult, NodeSpec
from ..errors import RetriesExhaustedError, TransientStoreError, WriteConflictError
from ..query_generation.cypher_builder import CypherBuilder, CypherStatement
from .mapping import EntityMapping, mapping_for_label

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_SECONDS = 1.0


class BatchUpsertWriter:
    """
    Applies batches of node specifications with one statement per batch.

    A record whose tenant-scoped name is already held by another key is
    reported as a conflict and skipped; the rest of its batch still lands.
    Transient store failures retry the whole batch with exponential backoff.
    """

    def __init__(
        self,
        graph: GraphStore,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff_seconds: float = DEFAULT_BACKOFF_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.graph = graph
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep

    def apply(self, batch: Sequence[NodeSpec]) -> BatchResult:
        """
        Upsert a batch of nodes.

        Args:
            batch: Node specifications, all of the same label

        Returns:
            BatchResult with applied and failed counts and the conflicting keys

        Raises:
            RetriesExhaustedError: If transient failures outlast the retry budget
        """
        result = BatchResult()
        if not batch:
            return result

        labels = {spec.label for spec in batch}
        if len(labels) != 1:
            raise ValueError(f"A batch must hold a single label, got {sorted(labels)}")
        mapping = mapping_for_label(labels.pop())

        specs, collisions = self._split_collisions(batch, mapping)
        for spec in collisions:
            logger.warning(
                "Conflict: %s %r repeats name %r for tenant %s within its batch",
                mapping.label,
                spec.key,
                spec.name,
                spec.tenant_scope,
            )
            result.conflicts.append(spec.key)

        try:
            applied = self._merge(specs, mapping)
        except WriteConflictError as exc:
            logger.warning(
                "%s batch rejected by a constraint (%s), applying rows one at a time",
                mapping.label,
                exc,
            )
            applied = self._merge_one_by_one(specs, mapping)

        for spec in specs:
            if spec.key in applied:
                result.applied += 1
            else:
                logger.warning(
                    "Conflict: %s %r not written, name %r is held by another record "
                    "in tenant %s",
                    mapping.label,
                    spec.key,
                    spec.name,
                    spec.tenant_scope,
                )
                result.conflicts.append(spec.key)

        result.failed = len(result.conflicts)
        return result

    def _merge(self, specs: List[NodeSpec], mapping: EntityMapping) -> set:
        if not specs:
            return set()
        statement = CypherBuilder.merge_nodes(
            mapping.label,
            [spec.to_parameters() for spec in specs],
            key_field=mapping.key_field,
            scope_field=mapping.scope_field if mapping.name_field else None,
            name_field=mapping.name_field,
        )
        rows = self._execute_with_retry(statement)
        return set(rows[0]["applied"]) if rows else set()

    def _merge_one_by_one(self, specs: List[NodeSpec], mapping: EntityMapping) -> set:
        applied = set()
        for spec in specs:
            try:
                applied |= self._merge([spec], mapping)
            except WriteConflictError as exc:
                logger.warning(
                    "Conflict: %s %r rejected: %s", mapping.label, spec.key, exc
                )
        return applied

    def _execute_with_retry(self, statement: CypherStatement) -> List[Dict[str, Any]]:
        last_error: Optional[TransientStoreError] = None
        for attempt in range(self.max_attempts):
            try:
                return self.graph.execute(statement)
            except TransientStoreError as exc:
                last_error = exc
                if attempt + 1 >= self.max_attempts:
                    break
                delay = self.backoff_seconds * 2**attempt
                logger.info(
                    "Batch write failed (attempt %d/%d): %s. Retrying in %.1f seconds...",
                    attempt + 1,
                    self.max_attempts,
                    exc,
                    delay,
                )
                self._sleep(delay)
        logger.error("Batch write failed after %d attempts", self.max_attempts)
        raise RetriesExhaustedError(self.max_attempts, last_error)

    @staticmethod
    def _split_collisions(
        batch: Sequence[NodeSpec], mapping: EntityMapping
    ) -> Tuple[List[NodeSpec], List[NodeSpec]]:
        """
        Separate rows whose tenant-scoped name is already claimed by an
        earlier row of the same batch. A repeated key replaces its earlier
        row first, so only the last row of each key claims a name.
        """
        by_key: Dict[Any, NodeSpec] = {}
        for spec in batch:
            by_key[spec.key] = spec

        owners: Dict[Tuple[Any, Any], Any] = {}
        kept: List[NodeSpec] = []
        collisions: List[NodeSpec] = []
        for spec in by_key.values():
            if mapping.name_field and spec.name is not None:
                slot = (spec.tenant_scope, spec.name)
                if owners.setdefault(slot, spec.key) != spec.key:
                    collisions.append(spec)
                    continue
            kept.append(spec)
        return kept, collisions
