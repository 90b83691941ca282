"""
Paginated reads from the relational source.

Pages are fetched in ascending key order with `LIMIT`/`OFFSET`. Without
snapshot isolation, rows inserted or deleted between pages can shift the
offsets, so a concurrently mutated source may see rows skipped or repeated.
"""

import logging
from typing import Any, Dict, Iterator, Optional, Tuple

from ..database.interface import SourceStore
from ..database.models import EntityType, SourceBatch
from ..query_generation.sql_builder import count_rows, select_page
from .mapping import ENTITY_MAPPINGS, EntityMapping

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 50


class PaginatedSourceReader:
    """Reads one entity type at a time as a lazy sequence of batches."""

    def __init__(
        self,
        source: SourceStore,
        batch_size: int = DEFAULT_BATCH_SIZE,
        tenant_id: Optional[Any] = None,
        limit: Optional[int] = None,
        mappings: Optional[Dict[EntityType, EntityMapping]] = None,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if limit is not None and limit < 0:
            raise ValueError("limit must not be negative")
        self.source = source
        self.batch_size = batch_size
        self.tenant_id = tenant_id
        self.limit = limit
        self.mappings = mappings or ENTITY_MAPPINGS

    def read_batches(
        self, entity_type: EntityType, batch_size: Optional[int] = None
    ) -> Iterator[SourceBatch]:
        """
        Yield the rows of an entity type page by page.

        Args:
            entity_type: Entity type to read
            batch_size: Page size, defaults to the reader's batch size

        Yields:
            SourceBatch with the rows and the offset of the page
        """
        mapping = self.mappings[entity_type]
        size = batch_size or self.batch_size
        filters = self._filters(mapping)
        offset = 0

        while True:
            page_size = size
            if self.limit is not None:
                page_size = min(size, self.limit - offset)
                if page_size <= 0:
                    return

            statement = select_page(
                mapping.table, mapping.key_field, page_size, offset, filters
            )
            rows = self.source.execute(statement)
            if not rows:
                return

            logger.debug(
                "Read %d %s row(s) at offset %d", len(rows), entity_type.value, offset
            )
            yield SourceBatch(entity_type=entity_type, offset=offset, rows=list(rows))

            if len(rows) < page_size:
                return
            offset += len(rows)

    def count(self, entity_type: EntityType) -> int:
        """Number of rows the reader would yield, honoring filter and limit."""
        mapping = self.mappings[entity_type]
        rows = self.source.execute(count_rows(mapping.table, self._filters(mapping)))
        total = int(rows[0]["count"]) if rows else 0
        if self.limit is not None:
            total = min(total, self.limit)
        return total

    def _filters(self, mapping: EntityMapping) -> Tuple[Tuple[str, Any], ...]:
        if self.tenant_id is None:
            return ()
        # Tenants are filtered by their own key, scoped tables by their tenant column.
        column = mapping.scope_field or mapping.key_field
        return ((column, self.tenant_id),)
