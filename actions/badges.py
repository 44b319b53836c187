from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError

from actions.ranks import format_badge, parse_badge
from db import ClaimSessionLocal
from models import BadgeClaim, Employee
from utils import iso_utc_now


log = logging.getLogger(__name__)


class BadgeAllocator:
    """
    Hands out the lowest free badge number inside a range.

    A number is taken once a `BadgeClaim` row for it commits; the claim's
    primary key is what keeps two concurrent hires from receiving the same
    badge. Claims commit in their own short session on the claim pool, never
    the request pool, and are visible to other workers before the hire
    transaction commits.
    """

    def __init__(self, session_factory: Callable = ClaimSessionLocal, max_attempts: int = 5):
        self._session_factory = session_factory
        self.max_attempts = max(1, int(max_attempts))
        self._lock = threading.Lock()

    @staticmethod
    def _used_numbers(s, prefix: str, range_min: int, range_max: int) -> set[int]:
        like = f"{prefix}-%"
        badges = list(s.execute(select(Employee.badgeNumber).where(Employee.badgeNumber.like(like))).scalars().all())
        badges += list(s.execute(select(BadgeClaim.badgeNumber).where(BadgeClaim.badgeNumber.like(like))).scalars().all())
        used: set[int] = set()
        for b in badges:
            parsed = parse_badge(b)
            if parsed and parsed[0] == prefix and range_min <= parsed[1] <= range_max:
                used.add(parsed[1])
        return used

    def allocate(self, range_min: int, range_max: int, prefix: str, employee_id: str = "") -> Optional[str]:
        prefix = str(prefix or "").strip().upper()
        with self._lock:
            for attempt in range(1, self.max_attempts + 1):
                s = self._session_factory()
                try:
                    used = self._used_numbers(s, prefix, range_min, range_max)
                    free = next((n for n in range(range_min, range_max + 1) if n not in used), None)
                    if free is None:
                        log.warning("badge range exhausted prefix=%s range=%s-%s", prefix, range_min, range_max)
                        return None

                    badge = format_badge(prefix, free)
                    s.add(BadgeClaim(badgeNumber=badge, employeeId=str(employee_id or ""), claimedAt=iso_utc_now()))
                    try:
                        s.commit()
                    except IntegrityError:
                        s.rollback()
                        log.info("badge %s claimed concurrently (attempt %s/%s)", badge, attempt, self.max_attempts)
                        continue
                    return badge
                finally:
                    s.close()

        log.warning(
            "badge claim gave up after %s attempts prefix=%s range=%s-%s", self.max_attempts, prefix, range_min, range_max
        )
        return None

    def release(self, badge: Optional[str]) -> None:
        if not badge:
            return
        s = self._session_factory()
        try:
            s.execute(delete(BadgeClaim).where(BadgeClaim.badgeNumber == badge))
            s.commit()
        finally:
            s.close()


_allocator = BadgeAllocator()


def configure_badge_allocator(max_attempts: int = 5) -> BadgeAllocator:
    global _allocator
    _allocator = BadgeAllocator(max_attempts=max_attempts)
    return _allocator


def badge_allocator() -> BadgeAllocator:
    return _allocator
