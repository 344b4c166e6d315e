"""Derived views over a project collection. Pure functions, no I/O."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, List

from project_normalizer import ProjectRecord, parse_manifest_date


def _date_key(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%d")
    except ValueError:
        return parse_manifest_date(value)


def sort_by_date(records: Iterable[ProjectRecord]) -> List[ProjectRecord]:
    """Newest first; records without a usable date go last in input order."""
    dated: list[tuple[datetime, ProjectRecord]] = []
    undated: list[ProjectRecord] = []
    for record in records:
        key = _date_key(record.get("date"))
        if key is None:
            undated.append(record)
        else:
            dated.append((key, record))
    dated.sort(key=lambda pair: pair[0], reverse=True)
    return [record for _, record in dated] + undated


def filter_by_tag(records: Iterable[ProjectRecord], tag: str) -> List[ProjectRecord]:
    wanted = tag.lower()
    result = []
    for record in records:
        tags = record.get("tags")
        if not isinstance(tags, list):
            continue
        if any(isinstance(t, str) and t.lower() == wanted for t in tags):
            result.append(record)
    return result


def filter_by_person(records: Iterable[ProjectRecord], name: str) -> List[ProjectRecord]:
    """Match credited people by exact, case-insensitive name."""
    wanted = name.lower()
    result = []
    for record in records:
        credits = record.get("credits")
        if not isinstance(credits, list):
            continue
        if any(
            isinstance(credit, dict)
            and isinstance(credit.get("name"), str)
            and credit["name"].lower() == wanted
            for credit in credits
        ):
            result.append(record)
    return result


def all_tags(records: Iterable[ProjectRecord]) -> List[str]:
    tags: set[str] = set()
    for record in records:
        values = record.get("tags")
        if not isinstance(values, list):
            continue
        for tag in values:
            if isinstance(tag, str) and tag.strip():
                tags.add(tag.strip())
    return sorted(tags)
