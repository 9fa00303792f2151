"""
Batch reader: pages eligible rows of one entity type out of the store.

The fetch filter is a disjunction over the incremental window:

    no watermark  → every row passing the inclusion predicate
    watermark     → created_at > wm OR updated_at > wm OR id IN dirty ids

The inclusion predicate is always AND-ed on top. Pages are keyset-based
(``id > after_id ORDER BY id``) so rows that start matching while the
pass runs cannot shift later pages.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Tuple

from search_sync import config

log = logging.getLogger("search-sync.reader")


@dataclass(frozen=True)
class FetchFilter:
    watermark: Optional[datetime] = None
    dirty_ids: Tuple[int, ...] = field(default_factory=tuple)

    @property
    def is_full_scan(self) -> bool:
        return self.watermark is None

    @classmethod
    def build(cls, watermark: Optional[datetime], dirty_ids) -> "FetchFilter":
        return cls(watermark=watermark, dirty_ids=dedupe_ids(dirty_ids))

    def matches(self, row: Dict[str, Any]) -> bool:
        """In-memory evaluation of the window (inclusion predicate excluded)."""
        if self.watermark is None:
            return True
        created = row.get("created_at")
        updated = row.get("updated_at")
        return (
            (created is not None and created > self.watermark)
            or (updated is not None and updated > self.watermark)
            or row.get("id") in self.dirty_ids
        )


def dedupe_ids(ids) -> Tuple[int, ...]:
    """Queue ids may repeat; keep the first occurrence of each."""
    seen = set()
    out = []
    for i in ids or ():
        if i not in seen:
            seen.add(i)
            out.append(i)
    return tuple(out)


def build_fetch_query(entity_type, fetch_filter: FetchFilter,
                      after_id: Optional[int], limit: int) -> Tuple[str, List[Any]]:
    """Compose SELECT + WHERE + ORDER BY + LIMIT for one page."""
    where = [f"({entity_type.inclusion_sql})"]
    params: List[Any] = []

    if not fetch_filter.is_full_scan:
        window = [
            f"{entity_type.created_column} > %s",
            f"{entity_type.updated_column} > %s",
        ]
        params.extend([fetch_filter.watermark, fetch_filter.watermark])
        if fetch_filter.dirty_ids:
            window.append("t.id = ANY(%s)")
            params.append(list(fetch_filter.dirty_ids))
        where.append("(" + " OR ".join(window) + ")")

    if after_id is not None:
        where.append("t.id > %s")
        params.append(after_id)

    sql = (
        entity_type.select_sql.rstrip()
        + "\n        WHERE " + "\n          AND ".join(where)
        + "\n        ORDER BY t.id"
        + "\n        LIMIT %s"
    )
    params.append(limit)
    return sql, params


class BatchReader:
    """Read-only pager over one entity type."""

    def __init__(self, store, entity_type, page_size: int = None):
        self.store = store
        self.entity_type = entity_type
        self.page_size = page_size or config.READ_BATCH_SIZE

    def fetch(self, fetch_filter: FetchFilter, after_id: Optional[int] = None,
              limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """One page; empty list signals exhaustion."""
        return self.store.fetch_entities(
            self.entity_type, fetch_filter, after_id, limit or self.page_size
        )

    def pages(self, fetch_filter: FetchFilter) -> Iterator[Tuple[int, List[Dict[str, Any]]]]:
        """Yield ``(offset, rows)`` until a page comes back empty."""
        after_id = None
        offset = 0
        while True:
            log.debug("%s: fetching range %d-%d", self.entity_type.name,
                      offset, offset + self.page_size - 1)
            rows = self.fetch(fetch_filter, after_id)
            if not rows:
                return
            yield offset, rows
            offset += len(rows)
            after_id = rows[-1][self.entity_type.primary_key]
