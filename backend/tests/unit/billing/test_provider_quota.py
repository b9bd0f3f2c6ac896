"""Unit tests for quota and feature checks in the payment facade."""

from unittest.mock import AsyncMock

import pytest

from tests.fixtures.billing import make_plan
from tollgate import schemas
from tollgate.core.exceptions import BillingOperationError, InvalidStateError, NotFoundException


async def _customer_on(provider, plan: str, organization_id: str = "org_1") -> schemas.Customer:
    await provider.create_customer(
        schemas.CustomerDTO(reference_id=organization_id, name="Acme", email="a@acme.test")
    )
    if plan != "free":
        await provider.create_subscription(
            schemas.CreateSubscriptionParams(customer_id=organization_id, plan=plan)
        )
    return await provider.get_customer_by_id(organization_id)


@pytest.mark.unit
class TestHasQuota:
    """Tests for PaymentProvider.has_quota."""

    @pytest.mark.parametrize("usage, expected", [(0, True), (2, True), (3, False), (7, False)])
    async def test_metered_feature_against_limit(
        self, synced_provider, database, usage, expected
    ):
        """Quota remains while usage is below the plan limit."""
        # Arrange
        customer = await _customer_on(synced_provider, "free")
        database.set_usage(customer, "leads", usage)

        # Act
        result = await synced_provider.has_quota("org_1", "leads")

        # Assert
        assert result is expected

    async def test_missing_limit_is_unlimited(self, synced_provider, database):
        """A metered feature without a limit always has quota."""
        # Arrange
        customer = await _customer_on(synced_provider, "enterprise")
        database.set_usage(customer, "leads", 10_000)

        # Act & Assert
        assert await synced_provider.has_quota("org_1", "leads") is True

    async def test_disabled_and_absent_features_have_no_quota(self, synced_provider):
        """Disabled features and features the plan does not declare have no quota."""
        # Arrange
        await _customer_on(synced_provider, "free")

        # Act & Assert
        assert await synced_provider.has_quota("org_1", "chat-support") is False
        assert await synced_provider.has_quota("org_1", "exports") is False

    async def test_enabled_toggle_feature_has_quota(self, synced_provider):
        """Enabled features without a counter are always usable."""
        # Arrange
        synced_provider.options.subscriptions.plans.options.append(
            make_plan("team", monthly=0, features=[{"slug": "sso", "name": "SSO"}])
        )
        await synced_provider.sync()
        await _customer_on(synced_provider, "team")

        # Act & Assert
        assert await synced_provider.has_quota("org_1", "sso") is True

    async def test_unknown_customer_raises(self, synced_provider):
        """Quota of a customer that does not exist is an error."""
        with pytest.raises(BillingOperationError) as exc_info:
            await synced_provider.has_quota("org_missing", "leads")

        assert isinstance(exc_info.value.cause, NotFoundException)

    async def test_customer_without_subscription_raises(self, synced_provider):
        """Quota needs an active subscription."""
        # Arrange
        synced_provider.options.subscriptions.plans.default = None
        await _customer_on(synced_provider, "free")

        # Act
        with pytest.raises(BillingOperationError) as exc_info:
            await synced_provider.has_quota("org_1", "leads")

        # Assert
        assert isinstance(exc_info.value.cause, InvalidStateError)

    async def test_plan_without_features_has_no_quota(self, synced_provider):
        """An empty feature list leaves every feature without quota."""
        # Arrange
        synced_provider.options.subscriptions.plans.options.append(
            make_plan("bare", monthly=0, features=[])
        )
        await synced_provider.sync()
        await _customer_on(synced_provider, "bare")

        # Act
        allowed = await synced_provider.has_quota("org_1", "exports")
        info = await synced_provider.get_quota_info("org_1", "exports")

        # Assert
        assert allowed is False
        assert (info.enabled, info.remaining) == (False, 0)


@pytest.mark.unit
class TestCanUseFeature:
    """Tests for PaymentProvider.can_use_feature, which never raises."""

    async def test_enabled_feature(self, synced_provider, database):
        """Enabled features are usable regardless of the counter."""
        # Arrange
        customer = await _customer_on(synced_provider, "free")
        database.set_usage(customer, "leads", 99)

        # Act & Assert
        assert await synced_provider.can_use_feature("org_1", "leads") is True

    async def test_disabled_or_absent_feature(self, synced_provider):
        """Disabled and undeclared features are not usable."""
        # Arrange
        await _customer_on(synced_provider, "free")

        # Act & Assert
        assert await synced_provider.can_use_feature("org_1", "chat-support") is False
        assert await synced_provider.can_use_feature("org_1", "exports") is False

    async def test_failures_answer_false(self, synced_provider, database):
        """Missing customers, missing subscriptions and errors all answer False."""
        # Arrange
        synced_provider.options.subscriptions.plans.default = None
        await _customer_on(synced_provider, "free", organization_id="org_2")

        # Act & Assert
        assert await synced_provider.can_use_feature("org_missing", "leads") is False
        assert await synced_provider.can_use_feature("org_2", "leads") is False

        database.get_customer_by_id = AsyncMock(side_effect=RuntimeError("db down"))
        assert await synced_provider.can_use_feature("org_2", "leads") is False


@pytest.mark.unit
class TestGetQuotaInfo:
    """Tests for PaymentProvider.get_quota_info."""

    @pytest.mark.parametrize("usage, remaining", [(0, 3), (1, 2), (3, 0), (5, 0)])
    async def test_limited_feature(self, synced_provider, database, usage, remaining):
        """Remaining quota is the limit minus usage, never negative."""
        # Arrange
        customer = await _customer_on(synced_provider, "free")
        database.set_usage(customer, "leads", usage)

        # Act
        info = await synced_provider.get_quota_info("org_1", "leads")

        # Assert
        assert info == schemas.QuotaInfo(
            feature="leads", enabled=True, limit=3, usage=usage, remaining=remaining
        )
        assert (info.remaining > 0) == await synced_provider.has_quota("org_1", "leads")

    async def test_unlimited_feature(self, synced_provider, database):
        """Features without a limit report no remaining count."""
        # Arrange
        customer = await _customer_on(synced_provider, "enterprise")
        database.set_usage(customer, "leads", 42)

        # Act
        info = await synced_provider.get_quota_info("org_1", "leads")

        # Assert
        assert info.unlimited is True
        assert info.limit is None
        assert info.remaining is None
        assert info.usage == 42

    async def test_disabled_and_absent_features(self, synced_provider):
        """Disabled and undeclared features have nothing remaining."""
        # Arrange
        await _customer_on(synced_provider, "free")

        # Act
        disabled = await synced_provider.get_quota_info("org_1", "chat-support")
        absent = await synced_provider.get_quota_info("org_1", "exports")

        # Assert
        assert (disabled.enabled, disabled.remaining, disabled.unlimited) == (False, 0, False)
        assert (absent.enabled, absent.remaining, absent.unlimited) == (False, 0, False)

    async def test_customer_without_subscription_raises(self, synced_provider):
        """Quota info needs an active subscription, like has_quota."""
        # Arrange
        synced_provider.options.subscriptions.plans.default = None
        await _customer_on(synced_provider, "free")

        # Act & Assert
        with pytest.raises(BillingOperationError, match="no active subscription"):
            await synced_provider.get_quota_info("org_1", "leads")
