"""Entity co-occurrence graph.

Entities (people, topics, projects) are linked whenever an external caller
reports that they appeared together in the same event. Edge weights decay
with a fixed 30-day half-life: this measures how current a relationship is,
which is a different question from how fresh a document is.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Iterable, List, Optional, Sequence

from vaultfinder.index.storage import VaultStore
from vaultfinder.models import Entity, EntityEvent, RelatedEntity
from vaultfinder.utils.timeutil import age_in_days, utc_now, utc_now_iso

LOGGER = logging.getLogger(__name__)

RELATION_HALF_LIFE_DAYS = 30.0
DEFAULT_ROLE = "mentioned"


def relation_weight(count: int, days_since_update: float) -> float:
    return count * 0.5 ** (days_since_update / RELATION_HALF_LIFE_DAYS)


class EntityIndex:
    def __init__(self, store: VaultStore) -> None:
        self.store = store

    def upsert_entity(
        self,
        type: str,
        name: str,
        aliases: Optional[Iterable[str]] = None,
        path: Optional[str] = None,
    ) -> str:
        """Store a new entity and return its generated identifier."""
        entity_id = uuid.uuid4().hex
        self.store.upsert_entity(
            Entity(id=entity_id, type=type, name=name, aliases=list(aliases or []), path=path)
        )
        LOGGER.debug("Created entity %s (%s: %s)", entity_id, type, name)
        return entity_id

    def find_entity(self, query: str, limit: int = 20) -> List[Entity]:
        """Case-insensitive substring match on name or any alias."""
        return self.store.find_entities(query, limit)

    def get_entity(self, entity_id: str) -> Optional[Entity]:
        return self.store.get_entity(entity_id)

    def list_entities(self, type: Optional[str] = None) -> List[Entity]:
        return self.store.list_entities(type)

    def record_co_occurrence(
        self,
        entity_ids: Sequence[str],
        event_id: str,
        role: Optional[str] = None,
    ) -> int:
        """Record that ``entity_ids`` appeared together in ``event_id``.

        Every pair is counted on every call. Event membership is stored once,
        so re-reporting an event only bumps the relation counts. Unknown ids
        are ignored. Returns the number of relation edges created or
        incremented.
        """
        role = role or DEFAULT_ROLE
        ordered = list(dict.fromkeys(entity_ids))
        known = self.store.existing_entity_ids(ordered)
        unknown = [entity_id for entity_id in ordered if entity_id not in known]
        if unknown:
            LOGGER.warning("Ignoring unknown entities for event %s: %s", event_id, ", ".join(unknown))
        ordered = [entity_id for entity_id in ordered if entity_id in known]

        now = utc_now_iso()
        edges = 0
        with self.store.transaction():
            for entity_id in ordered:
                if self.store.insert_entity_event(entity_id, event_id, role):
                    self.store.touch_entity(entity_id, now)

            for i, first in enumerate(ordered):
                for second in ordered[i + 1 :]:
                    self.store.upsert_relation(first, second, now)
                    edges += 1
        return edges

    def get_related(
        self,
        entity_id: str,
        limit: int = 10,
        now: Optional[datetime] = None,
    ) -> List[RelatedEntity]:
        """Neighbours ordered by raw co-occurrence count, with decayed weights."""
        reference = now or utc_now()
        related: List[RelatedEntity] = []
        for row in self.store.get_related(entity_id, limit):
            days = age_in_days(row.last_updated, reference) or 0.0
            related.append(
                RelatedEntity(
                    entity=row.related,
                    co_occurrence_count=row.co_occurrence_count,
                    decayed_weight=relation_weight(row.co_occurrence_count, days),
                )
            )
        return related

    def get_entity_events(self, entity_id: str) -> List[EntityEvent]:
        return self.store.get_entity_events(entity_id)

    def get_event_entities(self, event_id: str) -> List[EntityEvent]:
        return self.store.get_event_entities(event_id)
