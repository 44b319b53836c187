from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from utils import ValidationError


BADGE_PREFIX = "PD"

RANK_NAMES: dict[int, str] = {
    1: "Cadet",
    2: "Officer I",
    3: "Officer II",
    4: "Officer III",
    5: "Senior Officer",
    6: "Corporal",
    7: "Sergeant I",
    8: "Sergeant II",
    9: "Lieutenant I",
    10: "Lieutenant II",
    11: "Captain",
    12: "Commander",
    13: "Deputy Chief",
    14: "Assistant Chief",
    15: "Chief of Police",
    16: "Deputy Commissioner",
    17: "Commissioner",
}


@dataclass(frozen=True)
class Team:
    name: str
    minLevel: int
    maxLevel: int
    badgeMin: int
    badgeMax: int
    badgePrefix: str = BADGE_PREFIX


TEAMS: tuple[Team, ...] = (
    Team("Green", 1, 5, 200, 399),
    Team("Silver", 6, 9, 100, 199),
    Team("Gold", 10, 12, 50, 99),
    Team("Red", 13, 15, 20, 49),
    Team("White", 16, 17, 1, 19),
)


def rank_name(level: int) -> str:
    try:
        return RANK_NAMES[int(level)]
    except (KeyError, TypeError, ValueError):
        raise ValidationError(f"Unknown rank level: {level}")


def team_for_level(level: int) -> Team:
    lv = int(level)
    for t in TEAMS:
        if t.minLevel <= lv <= t.maxLevel:
            return t
    raise ValidationError(f"Unknown rank level: {level}")


def team_by_name(name: str) -> Optional[Team]:
    n = str(name or "").strip().lower()
    for t in TEAMS:
        if t.name.lower() == n:
            return t
    return None


def format_badge(prefix: str, number: int) -> str:
    return f"{prefix}-{int(number):03d}"


def parse_badge(badge: str) -> Optional[tuple[str, int]]:
    s = str(badge or "").strip()
    prefix, sep, digits = s.partition("-")
    if not sep or not prefix.isalpha() or not digits.isdigit():
        return None
    return prefix.upper(), int(digits)
