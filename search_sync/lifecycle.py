"""
Index lifecycle: get-or-create, settings reconciliation, shadow swap.

Settings are only written when they differ from what the index already
has, because every settings update makes Meilisearch reindex the whole
index. Meilisearch returns sortable and filterable attributes sorted, so
those are compared as sets; searchable attributes keep their order since
it drives attribute ranking.
"""

import logging
from typing import Any, Dict, List, Optional

from search_sync.errors import SchemaConflictError, SearchSyncError
from search_sync.schema import IndexSettings

log = logging.getLogger("search-sync.lifecycle")

# (IndexSettings field, Meilisearch settings key, client method, order matters)
SETTINGS_FIELDS = (
    ("searchable", "searchableAttributes", "update_searchable_attributes", True),
    ("sortable", "sortableAttributes", "update_sortable_attributes", False),
    ("filterable", "filterableAttributes", "update_filterable_attributes", False),
)


def settings_differ(desired: List[str], current: Optional[List[str]], ordered: bool) -> bool:
    current = list(current or [])
    if ordered:
        # a fresh index reports ["*"] for searchable attributes
        return list(desired or ["*"]) != current
    return sorted(desired) != sorted(current)


class IndexLifecycleManager:
    def __init__(self, client, waiter):
        self.client = client
        self.waiter = waiter

    def ensure_index(self, name: str, primary_key: str = "id") -> Dict[str, Any]:
        """Return the index, creating it (and waiting for creation) if absent."""
        index = self.client.get_index(name)
        if index is None:
            log.info("Creating index %s (primaryKey=%s)", name, primary_key)
            task = self.client.create_index(name, primary_key)
            self.waiter.wait([task.task_uid])
            index = self.client.get_index(name) or {"uid": name, "primaryKey": primary_key}
            return index

        current_pk = index.get("primaryKey")
        if current_pk is None:
            log.info("Index %s has no primary key, setting %s", name, primary_key)
            task = self.client.update_index(name, primary_key)
            self.waiter.wait([task.task_uid])
            index = dict(index, primaryKey=primary_key)
        elif current_pk != primary_key:
            raise SchemaConflictError(
                f"Index {name} uses primary key {current_pk!r}, expected {primary_key!r}"
            )
        return index

    def ensure_schema(self, name: str, settings: IndexSettings) -> List[str]:
        """Update only the attribute lists that differ. Returns what changed."""
        current = self.client.get_settings(name)
        changed = []
        tasks = []
        for field, key, method, ordered in SETTINGS_FIELDS:
            desired = getattr(settings, field)
            if settings_differ(desired, current.get(key), ordered):
                log.info("Index %s: updating %s to %s", name, key, desired)
                tasks.append(getattr(self.client, method)(name, desired))
                changed.append(field)
        self.waiter.wait([t.task_uid for t in tasks])
        if not changed:
            log.debug("Index %s: settings already up to date", name)
        return changed

    def setup(self, name: str, primary_key: str, settings: IndexSettings) -> Dict[str, Any]:
        index = self.ensure_index(name, primary_key)
        self.ensure_schema(name, settings)
        return index

    def drop_index(self, name: str) -> bool:
        if self.client.get_index(name) is None:
            return False
        task = self.client.delete_index(name)
        self.waiter.wait([task.task_uid])
        return True

    def prepare_shadow(self, shadow_name: str, primary_key: str,
                       settings: IndexSettings) -> Dict[str, Any]:
        """Fresh shadow index; leftovers of a failed rebuild are dropped first."""
        if self.drop_index(shadow_name):
            log.info("Dropped stale shadow index %s", shadow_name)
        return self.setup(shadow_name, primary_key, settings)

    def swap(self, live_name: str, shadow_name: str, primary_key: str = "id") -> None:
        """
        Promote the shadow index to the live name.

        Until the swap task succeeds the live index is never written, so a
        failure anywhere before that point leaves it as it was.
        """
        self.ensure_index(live_name, primary_key)
        log.info("Swapping %s <-> %s", live_name, shadow_name)
        task = self.client.swap_indexes(live_name, shadow_name)
        self.waiter.wait([task.task_uid])
        # the shadow name now holds the previous live documents; the next
        # rebuild drops it anyway, so failing here must not fail the pass
        try:
            self.drop_index(shadow_name)
        except SearchSyncError as e:
            log.warning("Could not drop old index under %s: %s", shadow_name, e)
