from __future__ import annotations

import locale
from datetime import timedelta
from typing import Any, Dict, List, Mapping, Sequence, Tuple, TypeVar, Union

from .aggregator import EPOCH
from .schemas import CitySummary, CountrySummary, SortDirection

Row = TypeVar("Row")

MISSING = "—"

# Column names used by the statistics tables
KEY_ALIASES = {
    "city": "key",
    "days": "days_present",
    "cityCount": "distinct_cities_visited",
    "lastVisitedTs": "last_visited_ts",
}


def resolve_key(key: str) -> str:
    return KEY_ALIASES.get(key, key)


def sort_rows(
    rows: Sequence[Row],
    key: str,
    direction: Union[SortDirection, str] = SortDirection.DESC,
) -> List[Row]:
    """Stable single-column sort over summaries or mappings.

    Strings collate with the current locale; everything else compares
    numerically with missing values ordered as 0. Ties keep input order in
    both directions. The rows themselves are never modified.
    """
    direction = SortDirection(direction)
    field = resolve_key(key)
    if not rows:
        return []
    if not any(_has_field(row, field) for row in rows):
        raise ValueError(f"Unknown sort key: {key}")

    values = [_field_value(row, field) for row in rows]
    if any(isinstance(value, str) for value in values):
        sort_key = lambda value: locale.strxfrm("" if value is None else str(value))  # noqa: E731
    else:
        sort_key = lambda value: 0 if value is None else value  # noqa: E731

    order = sorted(
        range(len(rows)),
        key=lambda idx: sort_key(values[idx]),
        reverse=direction is SortDirection.DESC,
    )
    return [rows[idx] for idx in order]


def toggle_direction(
    active_key: str, active_dir: Union[SortDirection, str], clicked_key: str
) -> Tuple[str, SortDirection]:
    """Next (key, direction) after a click on a sortable column header."""
    if clicked_key == active_key and SortDirection(active_dir) is SortDirection.ASC:
        return clicked_key, SortDirection.DESC
    return clicked_key, SortDirection.ASC


def format_timestamp(timestamp: int | None) -> str:
    if not timestamp:
        return MISSING
    try:
        moment = EPOCH + timedelta(milliseconds=timestamp)
    except (OverflowError, ValueError):
        return str(timestamp)
    return moment.strftime("%Y-%m-%d %H:%M UTC")


def city_table_rows(rows: Sequence[CitySummary]) -> List[Dict[str, str]]:
    return [
        {
            "City": row.key,
            "Last visited": format_timestamp(row.last_visited_ts),
            "Visits": str(row.visits),
            "Days": str(row.days_present),
        }
        for row in rows
    ]


def country_table_rows(rows: Sequence[CountrySummary]) -> List[Dict[str, str]]:
    return [
        {
            "Country": row.country,
            "Last visited": format_timestamp(row.last_visited_ts),
            "Visits": str(row.visits),
            "Days": str(row.days_present),
            "Cities visited": str(row.distinct_cities_visited),
        }
        for row in rows
    ]


def _has_field(row: Any, field: str) -> bool:
    if isinstance(row, Mapping):
        return field in row
    return field in getattr(type(row), "model_fields", {}) or hasattr(row, field)


def _field_value(row: Any, field: str) -> Any:
    if isinstance(row, Mapping):
        return row.get(field)
    return getattr(row, field, None)
