"""Feature usage counting.

A metered feature names a usage counter through its ``table`` field. Counters are
registered up front in a ``UsageRegistry``; a name without a counter counts as zero.
"""

from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from tollgate.models import Lead, Membership, Submission
from tollgate.schemas.billing import CyclePeriod

# (session, organization_id, counted-since) -> number of rows
UsageCounter = Callable[[AsyncSession, str, Optional[datetime]], Awaitable[int]]

EPOCH = datetime(1970, 1, 1)
FAR_FUTURE = datetime(9999, 12, 31)


def cycle_window(cycle: Optional[CyclePeriod], now: datetime) -> tuple[datetime, datetime]:
    """Return the (last_reset, next_reset) window of a usage cycle containing ``now``.

    Days start at midnight, weeks on Sunday, months on the 1st and years on January 1st.
    Without a cycle usage never resets.
    """
    if cycle is None:
        return EPOCH, FAR_FUTURE

    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    cycle = CyclePeriod(cycle)

    if cycle == CyclePeriod.DAY:
        return today, today + timedelta(days=1)

    if cycle == CyclePeriod.WEEK:
        # weekday() is 0 on Monday, 6 on Sunday
        start = today - timedelta(days=(today.weekday() + 1) % 7)
        return start, start + timedelta(days=7)

    if cycle == CyclePeriod.MONTH:
        start = today.replace(day=1)
        if start.month == 12:
            return start, start.replace(year=start.year + 1, month=1)
        return start, start.replace(month=start.month + 1)

    start = today.replace(month=1, day=1)
    return start, start.replace(year=start.year + 1)


def count_rows(model: Any) -> UsageCounter:
    """Build a counter over a model with ``organization_id`` and ``created_at`` columns."""

    async def counter(db: AsyncSession, organization_id: str, since: Optional[datetime]) -> int:
        query = select(func.count()).select_from(model).where(
            model.organization_id == organization_id
        )
        if since is not None:
            query = query.where(model.created_at >= since)
        result = await db.execute(query)
        return int(result.scalar_one())

    return counter


class UsageRegistry:
    """Explicit mapping from usage counter names to counting functions.

    Names are case-insensitive, so a feature may say ``"Lead"`` or ``"lead"``.
    """

    def __init__(self, counters: Optional[dict[str, UsageCounter]] = None):
        """Initialize the registry with optional counters."""
        self._counters: dict[str, UsageCounter] = {}
        for name, counter in (counters or {}).items():
            self.register(name, counter)

    def register(self, name: str, counter: UsageCounter) -> None:
        """Register a counter under a name, replacing any previous one."""
        self._counters[name.lower()] = counter

    def register_model(self, name: str, model: Any) -> None:
        """Register a row counter for an organization-scoped model."""
        self.register(name, count_rows(model))

    def resolve(self, name: Optional[str]) -> Optional[UsageCounter]:
        """Return the counter for a name, None when unknown."""
        if not name:
            return None
        return self._counters.get(name.lower())

    def names(self) -> list[str]:
        """Registered counter names."""
        return sorted(self._counters)


def default_usage_registry() -> UsageRegistry:
    """Registry for the built-in organization-scoped models."""
    registry = UsageRegistry()
    registry.register_model("member", Membership)
    registry.register_model("membership", Membership)
    registry.register_model("lead", Lead)
    registry.register_model("submission", Submission)
    return registry
