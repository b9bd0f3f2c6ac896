"""Unit tests for the plan catalog and facade options."""

import json

import pytest

from tollgate.billing.catalog import DEFAULT_PLANS, build_payment_options, load_catalog
from tollgate.core.config import Settings
from tollgate.core.exceptions import TollgateException
from tollgate.schemas.billing import MeteredFeature, ToggleFeature

PLAN = {
    "slug": "team",
    "name": "Team",
    "metadata": {"features": [{"slug": "seats", "name": "Seats", "limit": 10, "table": "member"}]},
    "prices": [{"slug": "team-monthly", "amount": 4900, "currency": "EUR", "interval": "month"}],
}


@pytest.mark.unit
class TestDefaultPlans:
    """Tests for the built-in catalog."""

    def test_slugs_are_unique_and_free_is_free(self):
        """The built-in catalog starts customers on a free plan."""
        slugs = [plan.slug for plan in DEFAULT_PLANS]
        assert len(slugs) == len(set(slugs))

        free = next(plan for plan in DEFAULT_PLANS if plan.slug == "free")
        assert all(price.amount == 0 for price in free.prices)

    def test_features_are_classified(self):
        """Counted features are metered and flags are toggles."""
        pro = next(plan for plan in DEFAULT_PLANS if plan.slug == "pro")

        assert isinstance(pro.metadata.get_feature("leads"), MeteredFeature)
        assert isinstance(pro.metadata.get_feature("chat-support"), ToggleFeature)


@pytest.mark.unit
class TestLoadCatalog:
    """Tests for load_catalog."""

    @pytest.mark.parametrize("content", [[PLAN], {"plans": [PLAN]}])
    def test_reads_list_or_object(self, tmp_path, content):
        """Plans may be a top-level list or nested under ``plans``."""
        # Arrange
        path = tmp_path / "plans.json"
        path.write_text(json.dumps(content), encoding="utf-8")

        # Act
        [plan] = load_catalog(path)

        # Assert
        assert plan.slug == "team"
        assert plan.prices[0].currency == "eur"
        assert isinstance(plan.metadata.get_feature("seats"), MeteredFeature)

    def test_duplicate_slugs(self, tmp_path):
        """Two plans with one slug are rejected."""
        path = tmp_path / "plans.json"
        path.write_text(json.dumps([PLAN, PLAN]), encoding="utf-8")

        with pytest.raises(TollgateException, match="Duplicate plan slugs"):
            load_catalog(path)

    def test_invalid_plan(self, tmp_path):
        """Plans that fail validation are rejected with the offending field."""
        path = tmp_path / "plans.json"
        path.write_text(json.dumps([{"slug": "broken"}]), encoding="utf-8")

        with pytest.raises(TollgateException, match="name"):
            load_catalog(path)

    def test_missing_file(self, tmp_path):
        """Unreadable files are reported."""
        with pytest.raises(TollgateException, match="Could not read plan catalog"):
            load_catalog(tmp_path / "missing.json")


@pytest.mark.unit
class TestBuildPaymentOptions:
    """Tests for build_payment_options."""

    def test_defaults(self):
        """Settings defaults give the built-in catalog with a trial on the free plan."""
        # Act
        options = build_payment_options(Settings(APP_FULL_URL="https://app.test"))

        # Assert
        assert options.subscriptions.enabled is True
        assert options.subscriptions.plans.default == "free"
        assert options.subscriptions.plans.options == DEFAULT_PLANS
        assert (options.subscriptions.trial.enabled, options.subscriptions.trial.duration) == (
            True,
            14,
        )
        assert options.paths.checkout_success_url == (
            "https://app.test/app/settings/organization/billing?state=success"
        )

    def test_catalog_file_and_absolute_paths(self, tmp_path):
        """A catalog file replaces the built-in plans and absolute URLs are kept."""
        # Arrange
        path = tmp_path / "plans.json"
        path.write_text(json.dumps([PLAN]), encoding="utf-8")
        config = Settings(
            BILLING_PLANS_FILE=str(path),
            BILLING_DEFAULT_PLAN="team",
            PORTAL_RETURN_URL="https://billing.example.com/back",
        )

        # Act
        options = build_payment_options(config)

        # Assert
        assert [plan.slug for plan in options.subscriptions.plans.options] == ["team"]
        assert options.paths.portal_return_url == "https://billing.example.com/back"
