from __future__ import annotations

import re
from typing import Iterable

from workforce_summary.models import Reason
from workforce_summary.schemas import ReasonClassification

MOBILE_WORK_PATTERNS = (
    re.compile(r"mobiles?\s*arbeiten", re.IGNORECASE),
    re.compile(r"remote\s*work", re.IGNORECASE),
    re.compile(r"home\s*office", re.IGNORECASE),
    re.compile(r"work\s*from\s*home", re.IGNORECASE),
)

# Exact-name markers some locations book for presence rather than leave.
WORK_MARKER_PATTERNS = (
    re.compile(r"^arbeit$", re.IGNORECASE),
    re.compile(r"^abwesend$", re.IGNORECASE),
    re.compile(r"^abwesenheit$", re.IGNORECASE),
)

COMPENSATION_PATTERNS = (
    re.compile(r"überstunden", re.IGNORECASE),
    re.compile(r"compensation", re.IGNORECASE),
    re.compile(r"ausgleich", re.IGNORECASE),
)

SICK_LEAVE_PATTERNS = (
    re.compile(r"krankheit", re.IGNORECASE),
    re.compile(r"sick", re.IGNORECASE),
    re.compile(r"illness", re.IGNORECASE),
    re.compile(r"krank", re.IGNORECASE),
)


def _matches(patterns: tuple[re.Pattern[str], ...], name: str) -> bool:
    return any(pattern.search(name) for pattern in patterns)


def classify_reason(reason: Reason) -> ReasonClassification:
    name = (reason.name or "").strip()
    is_mobile_work = bool(name) and _matches(MOBILE_WORK_PATTERNS, name)
    is_work_marker = bool(name) and _matches(WORK_MARKER_PATTERNS, name)
    is_sick_leave = bool(name) and _matches(SICK_LEAVE_PATTERNS, name)
    is_compensation = bool(name) and _matches(COMPENSATION_PATTERNS, name)

    # Reportable absence: real leave (reduces days) or sickness, never a
    # presence marker.
    is_absence = (
        (reason.reduces_days or is_sick_leave)
        and not is_mobile_work
        and not is_work_marker
        and not is_compensation
        and not reason.counts_as_work
    )

    return ReasonClassification(
        reason_id=reason.id,
        name=reason.name,
        is_mobile_work=is_mobile_work,
        is_sick_leave=is_sick_leave,
        is_work_marker=is_work_marker,
        is_compensation=is_compensation,
        is_absence=is_absence,
        reduces_scheduled_hours=not reason.counts_as_work,
    )


def build_reason_map(reasons: Iterable[Reason]) -> dict[str, ReasonClassification]:
    return {reason.id: classify_reason(reason) for reason in reasons}
