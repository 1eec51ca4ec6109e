"""Domain tag vocabulary used by counters and achievement predicates."""

from __future__ import annotations

import re
from collections.abc import Iterable

from ecgsim.gamification.schemas import Difficulty

KNOWN_DIFFICULTIES: frozenset[str] = frozenset(d.value for d in Difficulty)

KNOWN_CATEGORIES: tuple[str, ...] = ("arrhythmia", "ischemia", "conduction", "normal", "other")

# Findings the content team currently tags ECGs with. The list grows with the
# case library, so findings are accepted on shape rather than membership.
_FINDING_TAG = re.compile(r"^[a-z][a-z0-9_]{0,63}$")

# Virtual finding: counts correct answers across all ischemic patterns.
ISCHEMIA_FINDINGS: tuple[str, ...] = (
    "ste",
    "hyperacute_t",
    "std_v1v4",
    "aslanger",
    "de_winter",
    "subtle_ste",
    "sgarbossa_modified",
)

FINDING_GROUPS: dict[str, tuple[str, ...]] = {
    "blocks": (
        "rbbb",
        "lbbb",
        "lafb",
        "lpfb",
        "avb_1st",
        "avb_2nd_type1",
        "avb_2nd_type2",
        "avb_3rd",
    ),
    "ischemia": ISCHEMIA_FINDINGS,
}


def recognized_difficulty(difficulty: str) -> str | None:
    return difficulty if difficulty in KNOWN_DIFFICULTIES else None


def recognized_categories(categories: Iterable[str]) -> list[str]:
    """Known categories in input order, each at most once."""
    return [c for c in dict.fromkeys(categories) if c in KNOWN_CATEGORIES]


def recognized_findings(findings: Iterable[str]) -> list[str]:
    """Well-formed finding tags in input order, each at most once."""
    return [f for f in dict.fromkeys(findings) if isinstance(f, str) and _FINDING_TAG.match(f)]
