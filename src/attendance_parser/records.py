from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, replace
from typing import Any

logger = logging.getLogger(__name__)

PLACEHOLDER_NAME = "Subject {n}"
CANDIDATE_DEFAULT_NAME = "Subject"


@dataclass(frozen=True)
class ParseLimits:
    """Plausibility thresholds, tuned against portal reports of a single term."""

    max_total: int = 300
    max_placeholder_total: int = 200


DEFAULT_LIMITS = ParseLimits()


def percentage(present: int, total: int) -> float:
    return present / total * 100 if total > 0 else 0.0


@dataclass(frozen=True)
class ParsedRecord:
    name: str
    total: int
    present: int
    absent: int
    code: str | None = None

    @property
    def percentage(self) -> float:
        return percentage(self.present, self.total)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "code": self.code,
            "total": self.total,
            "present": self.present,
            "absent": self.absent,
            "percentage": round(self.percentage, 2),
        }


def infer_missing(
    total: int | None, present: int | None, absent: int | None
) -> tuple[int | None, int | None, int | None]:
    """Fill in the third count from any two known ones."""
    if total is not None and present is not None and absent is None:
        absent = max(0, total - present)
    elif total is not None and absent is not None and present is None:
        present = max(0, total - absent)
    elif present is not None and absent is not None and total is None:
        total = present + absent
    return total, present, absent


def repair_counts(total: int, present: int, absent: int) -> tuple[int, int, int]:
    """
    Make present + absent == total.

    Present is trusted over absent: OCR misreads small absent counts more often,
    so absent is recomputed when it fits, and total is widened otherwise.
    """
    if present > total or absent > total or present + absent != total:
        if present + absent <= total:
            absent = max(0, total - present)
        else:
            total = max(total, present + absent)
    return total, present, absent


def apply_renames(records: Iterable[ParsedRecord], renames: Mapping[str, str]) -> list[ParsedRecord]:
    """Rename records by code when they have one, else by their current name."""
    out: list[ParsedRecord] = []
    for rec in records:
        new_name = renames.get(rec.code or rec.name)
        out.append(replace(rec, name=new_name) if new_name else rec)
    return out


def _to_count(v: object) -> int:
    if v is None or v == "":
        return 0
    if isinstance(v, bool):
        raise TypeError("boolean is not a count")
    return max(0, int(float(v)))  # type: ignore[arg-type]


def records_from_candidates(payload: object) -> list[ParsedRecord]:
    """
    Sanitize a structured candidate list from the remote extraction provider.

    Accepts either a bare list of subject dicts or an object with a
    ``subjects`` list. Items with a non-positive total or non-numeric counts
    are dropped; the remaining counts are repaired so the record invariants
    hold. Any percentage in the payload is ignored and recomputed.
    """
    if isinstance(payload, Mapping):
        items = payload.get("subjects") or []
    elif isinstance(payload, list):
        items = payload
    else:
        return []

    out: list[ParsedRecord] = []
    for item in items:
        if not isinstance(item, Mapping):
            continue
        name = str(item.get("name") or "").strip() or CANDIDATE_DEFAULT_NAME
        try:
            total = _to_count(item.get("total"))
            present = _to_count(item.get("present"))
            absent = _to_count(item.get("absent"))
        except (TypeError, ValueError, OverflowError):
            logger.debug("dropping candidate with non-numeric counts: %r", item)
            continue
        if total <= 0:
            continue
        total, present, absent = repair_counts(total, present, absent)
        code = item.get("code")
        out.append(ParsedRecord(name, total, present, absent, str(code).upper() if code else None))
    return out


def records_to_dicts(records: Iterable[ParsedRecord]) -> list[dict[str, Any]]:
    return [r.to_dict() for r in records]
