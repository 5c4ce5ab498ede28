"""
Cascading multi-level filter state.

Holds the current selection at each of the seven ordered facet levels:

    cohort > cycle > evaluation_month > region > district > cluster > village

Cascade Rule:
    Setting the selection at level k clears every level after k. A lower
    level choice only makes sense under the higher level choices it was made
    against, so the state never expresses e.g. a district selection left over
    from a region that is no longer selected.

Serialization:
    to_query() yields one `facet -> "v1,v2"` entry per non-empty facet, in
    facet order. Empty facets are omitted (no constraint), never sent as "".
    The result is used verbatim as request parameters for both the records
    endpoint and the filter-options endpoint.

Usage:
    from cluster_trends.services.filter_state import FilterState

    state = FilterState()
    state.set(FacetLevel.REGION, ["Western"])
    state.set(FacetLevel.DISTRICT, ["Kasese", "Kabarole"])
    state.to_query()
    # {'region': 'Western', 'district': 'Kasese,Kabarole'}
    state.set(FacetLevel.REGION, ["Eastern"])
    state.to_query()
    # {'region': 'Eastern'}
"""

from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from cluster_trends.models.enums import FacetLevel
from cluster_trends.models.schemas import ScopeConstraint


# Cascade order, taken from the enum declaration order
FACET_ORDER: Tuple[FacetLevel, ...] = tuple(FacetLevel)

LevelLike = Union[FacetLevel, str]


def _normalize_values(values: Optional[Iterable[Any]]) -> Tuple[str, ...]:
    """Stringify, strip, drop blanks and duplicates (first occurrence wins)."""
    if values is None:
        return ()
    if isinstance(values, (str, int)):
        values = [values]

    seen: Dict[str, None] = {}
    for value in values:
        if value is None:
            continue
        text = str(value).strip()
        if text and text not in seen:
            seen[text] = None
    return tuple(seen)


class FilterState:
    """
    Current selection per facet level, with cascading invalidation.

    Mutated only through set() and clear(); everything else is read-only.
    """

    def __init__(self, selections: Optional[Mapping[LevelLike, Iterable[Any]]] = None):
        self._selections: Dict[FacetLevel, Tuple[str, ...]] = {
            level: () for level in FACET_ORDER
        }
        # An initial mapping is taken as-is, without cascading
        for key, values in (selections or {}).items():
            self._selections[FacetLevel(key)] = _normalize_values(values)

    @classmethod
    def from_scope(cls, scope: Optional[ScopeConstraint]) -> "FilterState":
        """Session-start state for a restricted caller: the scope facet pre-selected."""
        if scope is None:
            return cls()
        return cls({scope.facet: [scope.value]})

    # -------------------------------------------------------------------------
    # Mutation
    # -------------------------------------------------------------------------

    def set(self, level: LevelLike, values: Optional[Iterable[Any]]) -> None:
        """
        Replace the selection at `level` and clear every level after it.

        Args:
            level: Facet level (enum member or its string value).
            values: Selected values; None or empty means "no constraint".

        Raises:
            ValueError: If `level` is not a known facet.
        """
        level = FacetLevel(level)
        self._selections[level] = _normalize_values(values)

        position = FACET_ORDER.index(level)
        for lower in FACET_ORDER[position + 1:]:
            self._selections[lower] = ()

    def clear(self) -> None:
        for level in FACET_ORDER:
            self._selections[level] = ()

    # -------------------------------------------------------------------------
    # Read access
    # -------------------------------------------------------------------------

    def get(self, level: LevelLike) -> Tuple[str, ...]:
        return self._selections[FacetLevel(level)]

    def is_empty(self) -> bool:
        return not any(self._selections.values())

    def active_count(self) -> int:
        """Total number of selected values across all facets."""
        return sum(len(values) for values in self._selections.values())

    def to_query(self) -> Dict[str, str]:
        """Serialized filter parameters: comma-joined values per non-empty facet."""
        return {
            level.value: ",".join(values)
            for level, values in self._selections.items()
            if values
        }

    def as_dict(self) -> Dict[str, List[str]]:
        """Every facet, in order, with its selected values (empty lists included)."""
        return {level.value: list(values) for level, values in self._selections.items()}

    def copy(self) -> "FilterState":
        return FilterState(self._selections)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FilterState):
            return NotImplemented
        return self._selections == other._selections

    def __repr__(self) -> str:
        return f"FilterState({self.to_query()!r})"
