"""
Run orchestration: phases, per-type node pipelines and observers.

A run moves through SETUP, NODE_SYNC, RELATIONSHIP_SYNC, ANALYSIS and DONE.
Tenants are synchronized first; the other entity types then run in
parallel, one pipeline per type, each with its own source connection.
Relationships are derived only after every node pipeline has finished.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

from tqdm import tqdm

from ..database.interface import GraphStore, SourceStore
from ..database.models import ConsistencyReport, EntityType, LinkResult
from ..errors import RetriesExhaustedError
from ..utils.config import SyncConfig
from .analysis import ConsistencyAnalyzer
from .mapping import EntityMapper
from .reader import PaginatedSourceReader
from .relationships import RelationshipBuilder, default_link_plan
from .schema import SchemaManager
from .writer import BatchUpsertWriter

logger = logging.getLogger(__name__)

SYNC_ORDER = (
    EntityType.TENANT,
    EntityType.USER,
    EntityType.ENTITY,
    EntityType.FUND,
    EntityType.SUBSCRIPTION,
)

COUNTERS = (
    "read",
    "mapped",
    "written",
    "skipped",
    "failed",
    "relationships_created",
    "relationships_removed",
    "duplicate_groups",
    "orphans",
    "multiple_memberships",
)


class Phase(Enum):
    """Phases of a run, in execution order."""

    SETUP = "setup"
    NODE_SYNC = "node_sync"
    RELATIONSHIP_SYNC = "relationship_sync"
    ANALYSIS = "analysis"
    DONE = "done"


@dataclass
class PhaseResult:
    """Event emitted when a phase (or one entity type's node sync) ends."""

    phase: Phase
    entity_type: Optional[EntityType] = None
    counts: Dict[str, int] = field(default_factory=dict)
    cancelled: bool = False
    seconds: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase.value,
            "entity_type": self.entity_type.value if self.entity_type else None,
            "counts": dict(self.counts),
            "cancelled": self.cancelled,
            "seconds": round(self.seconds, 3),
        }


class RunSummary:
    """Counters and results of one run, safe to update from worker threads."""

    def __init__(self):
        self._lock = threading.Lock()
        self.counts: Dict[str, int] = dict.fromkeys(COUNTERS, 0)
        self.by_type: Dict[str, Dict[str, int]] = {}
        self.phases: List[PhaseResult] = []
        self.links: List[LinkResult] = []
        self.report: Optional[ConsistencyReport] = None
        self.cancelled = False

    def add(self, entity_type: Optional[EntityType] = None, **counts: int) -> None:
        with self._lock:
            for name, value in counts.items():
                self.counts[name] += value
                if entity_type is not None:
                    per_type = self.by_type.setdefault(
                        entity_type.value, dict.fromkeys(COUNTERS[:5], 0)
                    )
                    per_type[name] = per_type.get(name, 0) + value

    def record_phase(self, result: PhaseResult) -> None:
        with self._lock:
            self.phases.append(result)

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "cancelled": self.cancelled,
                "counts": dict(self.counts),
                "entity_types": {k: dict(v) for k, v in self.by_type.items()},
                "relationships": [
                    {
                        "relationship": link.relationship,
                        "source": link.source_label,
                        "target": link.target_label,
                        "created": link.created,
                        "removed": link.removed,
                    }
                    for link in self.links
                ],
                "phases": [phase.to_dict() for phase in self.phases],
                "analysis": self.report.to_dict() if self.report else None,
            }


class SyncObserver:
    """Receives run events. Subclasses override what they need."""

    def on_phase_started(
        self,
        phase: Phase,
        entity_type: Optional[EntityType] = None,
        total: Optional[int] = None,
    ) -> None:
        pass

    def on_batch(
        self, entity_type: EntityType, rows: int, counts: Dict[str, int]
    ) -> None:
        pass

    def on_phase_finished(self, result: PhaseResult) -> None:
        pass


class LoggingObserver(SyncObserver):
    """Narrates the run through the module logger."""

    def on_phase_started(self, phase, entity_type=None, total=None):
        if entity_type is None:
            logger.info("Phase %s started", phase.value)
        else:
            logger.info(
                "Syncing %s (%s rows)",
                entity_type.value,
                total if total is not None else "unknown",
            )

    def on_batch(self, entity_type, rows, counts):
        logger.debug("%s batch of %d row(s): %s", entity_type.value, rows, counts)

    def on_phase_finished(self, result):
        what = result.entity_type.value if result.entity_type else result.phase.value
        logger.info(
            "%s %s in %.1fs: %s",
            what,
            "cancelled" if result.cancelled else "completed",
            result.seconds,
            result.counts,
        )


class ProgressObserver(SyncObserver):
    """One tqdm progress bar per entity type being synchronized."""

    def __init__(self, disable: bool = False):
        self.disable = disable
        self._bars: Dict[EntityType, tqdm] = {}
        self._lock = threading.Lock()

    def on_phase_started(self, phase, entity_type=None, total=None):
        if phase != Phase.NODE_SYNC or entity_type is None:
            return
        with self._lock:
            self._bars[entity_type] = tqdm(
                total=total,
                unit="row",
                desc=entity_type.value,
                disable=self.disable,
            )

    def on_batch(self, entity_type, rows, counts):
        with self._lock:
            bar = self._bars.get(entity_type)
            if bar is not None:
                bar.update(rows)

    def on_phase_finished(self, result):
        if result.entity_type is None:
            return
        with self._lock:
            bar = self._bars.pop(result.entity_type, None)
        if bar is not None:
            bar.close()


class NodeSyncPipeline:
    """Reads, maps and writes one entity type, one batch at a time."""

    def __init__(
        self,
        entity_type: EntityType,
        reader: PaginatedSourceReader,
        mapper: EntityMapper,
        writer: BatchUpsertWriter,
        summary: RunSummary,
        stop_event: Optional[threading.Event] = None,
        observers: Sequence[SyncObserver] = (),
    ):
        self.entity_type = entity_type
        self.reader = reader
        self.mapper = mapper
        self.writer = writer
        self.summary = summary
        self.stop_event = stop_event or threading.Event()
        self.observers = list(observers)

    def run(self) -> PhaseResult:
        """
        Synchronize every source row of the entity type.

        Returns:
            PhaseResult with this type's counters

        Raises:
            RetriesExhaustedError: With the entity type and the offset of the
                last batch that was fully written
        """
        started = time.monotonic()
        totals = dict.fromkeys(COUNTERS[:5], 0)
        last_confirmed_offset: Optional[int] = None
        cancelled = False

        for batch in self.reader.read_batches(self.entity_type):
            if self.stop_event.is_set():
                cancelled = True
                break

            mapped = self.mapper.map_batch(self.entity_type, batch.rows)
            try:
                result = self.writer.apply(mapped.specs)
            except RetriesExhaustedError as exc:
                raise RetriesExhaustedError(
                    exc.attempts,
                    exc.cause,
                    entity_type=self.entity_type.value,
                    last_confirmed_offset=last_confirmed_offset,
                ) from exc

            counts = {
                "read": len(batch),
                "mapped": len(mapped.specs),
                "written": result.applied,
                "skipped": len(mapped.errors),
                "failed": result.failed,
            }
            self.summary.add(self.entity_type, **counts)
            for name, value in counts.items():
                totals[name] += value
            last_confirmed_offset = batch.offset
            for observer in self.observers:
                observer.on_batch(self.entity_type, len(batch), counts)

        return PhaseResult(
            phase=Phase.NODE_SYNC,
            entity_type=self.entity_type,
            counts=totals,
            cancelled=cancelled,
            seconds=time.monotonic() - started,
        )


class SyncRunner:
    """
    Drives a full run against a source factory and a shared graph store.

    Each node pipeline gets a fresh source from `source_factory`; the graph
    store is shared because its driver pools connections per thread.
    """

    def __init__(
        self,
        config: SyncConfig,
        source_factory: Callable[[], SourceStore],
        graph: GraphStore,
        observers: Optional[Sequence[SyncObserver]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.source_factory = source_factory
        self.graph = graph
        if observers is None:
            observers = [LoggingObserver()]
        self.observers = list(observers)
        self.writer = BatchUpsertWriter(
            graph,
            max_attempts=config.max_attempts,
            backoff_seconds=config.backoff_seconds,
            sleep=sleep,
        )
        self._stop = threading.Event()
        self._cancel_requested = False

    def cancel(self) -> None:
        """Stop after the batches in flight; the summary is marked cancelled."""
        logger.warning("Cancellation requested")
        self._cancel_requested = True
        self._stop.set()

    def run(self, skip_schema: bool = False, skip_analysis: bool = False) -> RunSummary:
        """
        Execute all phases.

        Args:
            skip_schema: Do not declare constraints and indexes first
            skip_analysis: Do not run the consistency checks at the end

        Returns:
            RunSummary of the run

        Raises:
            SchemaViolation: If existing data blocks a constraint
            RetriesExhaustedError: If a batch write keeps failing
        """
        summary = RunSummary()

        self._begin(Phase.SETUP)
        started = time.monotonic()
        counts: Dict[str, int] = {}
        if not skip_schema:
            report = SchemaManager(self.graph).ensure_schema()
            counts = {
                "constraints": len(report.constraints),
                "indexes": len(report.indexes),
            }
        self._end(
            summary,
            PhaseResult(Phase.SETUP, counts=counts, seconds=time.monotonic() - started),
        )

        self._sync_nodes(summary)
        if self._cancel_requested:
            summary.cancelled = True
            self._end(summary, PhaseResult(Phase.DONE, cancelled=True))
            return summary

        self._begin(Phase.RELATIONSHIP_SYNC)
        started = time.monotonic()
        builder = RelationshipBuilder(self.graph)
        links = builder.link_all(default_link_plan(self.config.link_managers))
        summary.links.extend(links)
        created = sum(link.created for link in links)
        removed = sum(link.removed for link in links)
        summary.add(relationships_created=created, relationships_removed=removed)
        self._end(
            summary,
            PhaseResult(
                Phase.RELATIONSHIP_SYNC,
                counts={
                    "relationships_created": created,
                    "relationships_removed": removed,
                },
                seconds=time.monotonic() - started,
            ),
        )

        if not skip_analysis:
            self._begin(Phase.ANALYSIS)
            started = time.monotonic()
            report = ConsistencyAnalyzer(self.graph).summarize()
            summary.report = report
            summary.add(
                duplicate_groups=report.duplicate_group_count,
                orphans=report.orphan_count,
                multiple_memberships=report.multiple_membership_count,
            )
            self._end(
                summary,
                PhaseResult(
                    Phase.ANALYSIS,
                    counts={
                        "duplicate_groups": report.duplicate_group_count,
                        "orphans": report.orphan_count,
                        "multiple_memberships": report.multiple_membership_count,
                    },
                    seconds=time.monotonic() - started,
                ),
            )

        self._end(summary, PhaseResult(Phase.DONE, counts=dict(summary.counts)))
        return summary

    def _sync_nodes(self, summary: RunSummary) -> None:
        self._begin(Phase.NODE_SYNC)
        self._sync_type(EntityType.TENANT, summary)
        if self._stop.is_set():
            return

        others = [
            entity_type for entity_type in SYNC_ORDER if entity_type != EntityType.TENANT
        ]
        failure: Optional[BaseException] = None
        with ThreadPoolExecutor(max_workers=self.config.max_workers) as executor:
            futures = {
                executor.submit(self._sync_type, entity_type, summary): entity_type
                for entity_type in others
            }
            for future in as_completed(futures):
                try:
                    future.result()
                except Exception as exc:  # pylint: disable=broad-except
                    # Let the other pipelines stop at their next batch boundary.
                    if failure is None:
                        failure = exc
                        logger.error("%s sync failed: %s", futures[future].value, exc)
                    self._stop.set()
        if failure is not None:
            raise failure

    def _sync_type(self, entity_type: EntityType, summary: RunSummary) -> PhaseResult:
        with self.source_factory() as source:
            reader = PaginatedSourceReader(
                source,
                batch_size=self.config.batch_size,
                tenant_id=self.config.tenant_id,
                limit=self.config.limit,
            )
            self._begin(Phase.NODE_SYNC, entity_type, reader.count(entity_type))
            pipeline = NodeSyncPipeline(
                entity_type,
                reader,
                EntityMapper(),
                self.writer,
                summary,
                stop_event=self._stop,
                observers=self.observers,
            )
            result = pipeline.run()
        self._end(summary, result)
        return result

    def _begin(
        self,
        phase: Phase,
        entity_type: Optional[EntityType] = None,
        total: Optional[int] = None,
    ) -> None:
        for observer in self.observers:
            observer.on_phase_started(phase, entity_type, total)

    def _end(self, summary: RunSummary, result: PhaseResult) -> None:
        summary.record_phase(result)
        for observer in self.observers:
            observer.on_phase_finished(result)
