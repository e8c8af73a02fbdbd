"""
Entity Reconciliation Module

Computes the minimal add/remove diff between the ids a renderer currently
shows and a fresh snapshot. Only presence changes are reported; an entity
whose id is in both sets is left alone even if its fields moved.
"""

from typing import Generic, Iterable, List, NamedTuple, Sequence, Set, TypeVar

from geofeed_service.models import GeoEntity

E = TypeVar("E", bound=GeoEntity)


class EntityDiff(NamedTuple):
    to_add: List[GeoEntity]
    to_remove: List[str]

    @property
    def is_empty(self) -> bool:
        return not self.to_add and not self.to_remove


def dedupe(entities: Iterable[E]) -> List[E]:
    """Drop repeated ids, keeping the first occurrence."""
    seen: Set[str] = set()
    unique = []
    for entity in entities:
        if entity.id in seen:
            continue
        seen.add(entity.id)
        unique.append(entity)
    return unique


def reconcile(previous_ids: Set[str], fresh_entities: Sequence[GeoEntity]) -> EntityDiff:
    """
    Diff a fresh snapshot against the currently rendered ids.

    Args:
        previous_ids: Ids the renderer currently holds
        fresh_entities: Complete fresh snapshot for the layer

    Returns:
        EntityDiff where ``to_remove`` is sorted and ``to_add`` keeps
        snapshot order. Both are empty when the id sets are equal.
    """
    fresh = dedupe(fresh_entities)
    new_ids = {entity.id for entity in fresh}

    if new_ids == previous_ids:
        return EntityDiff([], [])

    to_remove = sorted(previous_ids - new_ids)
    to_add = [entity for entity in fresh if entity.id not in previous_ids]
    return EntityDiff(to_add, to_remove)


class RenderedIdentitySet(Generic[E]):
    """Ids a renderer has materialised for one layer."""

    def __init__(self, ids: Iterable[str] = ()):
        self._ids: Set[str] = set(ids)

    @property
    def ids(self) -> Set[str]:
        return set(self._ids)

    def __len__(self) -> int:
        return len(self._ids)

    def __contains__(self, entity_id: object) -> bool:
        return entity_id in self._ids

    def reconcile(self, fresh_entities: Sequence[E]) -> EntityDiff:
        """Diff ``fresh_entities`` against this set and apply the result."""
        diff = reconcile(self._ids, fresh_entities)
        self.apply(diff)
        return diff

    def apply(self, diff: EntityDiff) -> None:
        self._ids.difference_update(diff.to_remove)
        self._ids.update(entity.id for entity in diff.to_add)

    def clear(self) -> List[str]:
        removed = sorted(self._ids)
        self._ids.clear()
        return removed
