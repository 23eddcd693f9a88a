"""
Grouping/Rollup Aggregator
==========================

WHAT:
    One generic "group rows by key, count/sum, percentage of total,
    conversion rate" primitive, instantiated per breakdown dimension
    (device, browser, OS, country, city, UTM, category, event property).

WHY:
    All breakdowns must agree on tie-breaking, null handling and division
    guards. Keeping one implementation keeps them consistent.

RULES:
    - Groups are sorted by count descending; ties keep first-seen order
      (Python's sort is stable and dicts preserve insertion order).
    - Missing revenue counts as 0.
    - percentage = count / total * 100, 0 when total is 0.
    - conversion_rate = converted / count * 100, 0 when count is 0.
    - Values stay unrounded here. Use round_pct / round2 only when building
      a response, never before feeding another calculation.

REFERENCES:
    - funnel_analytics/services/session_analytics.py: device/geo/UTM breakdowns
    - funnel_analytics/services/event_analytics.py: event-level breakdowns
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Dict, Hashable, Iterable, List, Optional, Sequence


KeyFn = Callable[[Any], Hashable]


# =============================================================================
# ARITHMETIC GUARDS
# =============================================================================

def to_float(value: Any) -> float:
    """Numeric/Decimal/None -> float, None as 0."""
    if value is None:
        return 0.0
    if isinstance(value, Decimal):
        return float(value)
    return float(value)


def safe_div(numerator: Any, denominator: Any, default: float = 0.0) -> float:
    denominator = to_float(denominator)
    if denominator == 0:
        return default
    return to_float(numerator) / denominator


def pct(part: Any, whole: Any) -> float:
    """part / whole * 100, 0 when whole is 0."""
    return safe_div(part, whole) * 100


def round_pct(value: Optional[float]) -> Optional[float]:
    """Presentation rounding for percentages and rates (one decimal)."""
    return None if value is None else round(value, 1)


def round2(value: Optional[float]) -> Optional[float]:
    return None if value is None else round(value, 2)


def fixed2(value: Optional[float]) -> str:
    """Two-decimal string, stable for equality checks ("20.00")."""
    return f"{to_float(value):.2f}"


# =============================================================================
# ROLLUP
# =============================================================================

@dataclass
class GroupRollup:
    key: Hashable
    count: int = 0
    revenue: float = 0.0
    converted: int = 0
    percentage: float = 0.0
    conversion_rate: float = 0.0
    sums: Dict[str, float] = field(default_factory=dict)
    rows: List[Any] = field(default_factory=list, repr=False)

    def mean(self, name: str) -> float:
        """Named sum divided by count, 0 for an empty group."""
        return safe_div(self.sums.get(name, 0), self.count)


def rollup(
    rows: Iterable[Any],
    key_fn: KeyFn,
    count_fn: Optional[Callable[[Any], int]] = None,
    revenue_fn: Optional[Callable[[Any], Any]] = None,
    converted_fn: Optional[Callable[[Any], bool]] = None,
    sums: Optional[Dict[str, Callable[[Any], Any]]] = None,
    total: Optional[float] = None,
    keep_rows: bool = False,
) -> List[GroupRollup]:
    """
    Group rows by key_fn and compute per-group metrics.

    Args:
        key_fn: row -> group key (any hashable; tuples for composite keys)
        count_fn: row -> weight added to count (default 1 per row)
        revenue_fn: row -> revenue, None treated as 0
        converted_fn: row -> whether the row counts as converted
        sums: extra named sums, row -> number (None as 0)
        total: denominator for percentage; defaults to the summed count
        keep_rows: retain each group's rows for follow-up per-group work

    Returns:
        GroupRollup list sorted by count descending (stable).
    """
    groups: Dict[Hashable, GroupRollup] = {}
    grand_total = 0
    sums = sums or {}

    for row in rows:
        key = key_fn(row)
        group = groups.get(key)
        if group is None:
            group = GroupRollup(key=key, sums={name: 0.0 for name in sums})
            groups[key] = group

        weight = count_fn(row) if count_fn else 1
        group.count += weight
        grand_total += weight
        if revenue_fn is not None:
            group.revenue += to_float(revenue_fn(row))
        if converted_fn is not None and converted_fn(row):
            group.converted += 1
        for name, value_of in sums.items():
            group.sums[name] += to_float(value_of(row))
        if keep_rows:
            group.rows.append(row)

    denominator = grand_total if total is None else total
    for group in groups.values():
        group.percentage = pct(group.count, denominator)
        group.conversion_rate = pct(group.converted, group.count)

    return sorted(groups.values(), key=lambda g: g.count, reverse=True)


def rollup_by_keys(rows: Iterable[Any], key_fns: Sequence[KeyFn], **kwargs) -> List[GroupRollup]:
    """Rollup by a composite key; one GroupRollup per distinct key tuple."""
    return rollup(rows, lambda row: tuple(fn(row) for fn in key_fns), **kwargs)


def group_by_property(
    rows: Sequence[Any],
    properties_of: Callable[[Any], Optional[Dict[str, Any]]],
    missing: str = "Unknown",
    **kwargs,
) -> Dict[str, List[GroupRollup]]:
    """
    Discover every property key present in rows, then roll up per key.

    Each key gets its own rollup over ALL rows; rows without the key land in
    the `missing` group. Values are stringified.
    """
    rows = list(rows)
    discovered: Dict[str, None] = {}
    for row in rows:
        for name in (properties_of(row) or {}):
            discovered.setdefault(name, None)

    def value_key(name: str) -> KeyFn:
        def _key(row: Any) -> str:
            value = (properties_of(row) or {}).get(name)
            return missing if value is None else str(value)
        return _key

    return {name: rollup(rows, value_key(name), **kwargs) for name in discovered}


def first_seen(values: Iterable[Any], default: Any = None) -> Any:
    """First non-empty value, else default."""
    for value in values:
        if value:
            return value
    return default
