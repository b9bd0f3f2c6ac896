"""Unit tests for usage cycles and the usage counter registry."""

from datetime import datetime
from unittest.mock import AsyncMock

import pytest

from tollgate.billing.usage import (
    EPOCH,
    FAR_FUTURE,
    UsageRegistry,
    cycle_window,
    default_usage_registry,
)
from tollgate.schemas.billing import CyclePeriod

NOW = datetime(2025, 3, 19, 15, 42, 7)  # a Wednesday


@pytest.mark.unit
class TestCycleWindow:
    """Tests for cycle_window."""

    @pytest.mark.parametrize(
        "cycle, start, end",
        [
            (CyclePeriod.DAY, datetime(2025, 3, 19), datetime(2025, 3, 20)),
            (CyclePeriod.WEEK, datetime(2025, 3, 16), datetime(2025, 3, 23)),
            (CyclePeriod.MONTH, datetime(2025, 3, 1), datetime(2025, 4, 1)),
            (CyclePeriod.YEAR, datetime(2025, 1, 1), datetime(2026, 1, 1)),
        ],
    )
    def test_window_contains_now(self, cycle, start, end):
        """Each cycle resets at its natural boundary."""
        assert cycle_window(cycle, NOW) == (start, end)

    def test_december_rolls_over_to_next_year(self):
        """The monthly window of December ends on January 1st."""
        assert cycle_window(CyclePeriod.MONTH, datetime(2025, 12, 31, 23, 59)) == (
            datetime(2025, 12, 1),
            datetime(2026, 1, 1),
        )

    def test_week_starts_on_sunday(self):
        """A Sunday opens its own weekly window."""
        sunday = datetime(2025, 3, 23, 8, 0)
        assert cycle_window(CyclePeriod.WEEK, sunday) == (
            datetime(2025, 3, 23),
            datetime(2025, 3, 30),
        )

    def test_string_cycle(self):
        """Cycles stored as strings are accepted."""
        assert cycle_window("month", NOW) == (datetime(2025, 3, 1), datetime(2025, 4, 1))

    def test_no_cycle_never_resets(self):
        """Usage without a cycle is counted over all time."""
        assert cycle_window(None, NOW) == (EPOCH, FAR_FUTURE)


@pytest.mark.unit
class TestUsageRegistry:
    """Tests for UsageRegistry."""

    def test_names_are_case_insensitive(self):
        """Counters resolve regardless of the case used by a plan."""
        # Arrange
        counter = AsyncMock(return_value=4)
        registry = UsageRegistry({"Lead": counter})

        # Act & Assert
        assert registry.resolve("lead") is counter
        assert registry.resolve("LEAD") is counter
        assert registry.names() == ["lead"]

    def test_unknown_and_empty_names(self):
        """Names without a counter resolve to None."""
        registry = UsageRegistry()

        assert registry.resolve("export") is None
        assert registry.resolve(None) is None
        assert registry.resolve("") is None

    def test_register_replaces_counter(self):
        """Registering a name twice keeps the last counter."""
        # Arrange
        registry = UsageRegistry()
        first, second = AsyncMock(), AsyncMock()

        # Act
        registry.register("seat", first)
        registry.register("Seat", second)

        # Assert
        assert registry.resolve("seat") is second

    def test_default_registry_covers_built_in_models(self):
        """Members, leads and submissions are counted out of the box."""
        assert default_usage_registry().names() == ["lead", "member", "membership", "submission"]
