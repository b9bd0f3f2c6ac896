"""Configuration settings for the Tollgate backend.

Wraps environment variables and provides defaults.
"""

from typing import Optional

from pydantic import Field, PostgresDsn, ValidationInfo, field_validator, model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Pydantic settings class.

    Attributes:
    ----------
        PROJECT_NAME (str): The name of the project.
        LOCAL_DEVELOPMENT (bool): Whether the application is running locally.
        ENVIRONMENT (str): The deployment environment (local, dev, test, prd).
        FRONTEND_LOCAL_DEVELOPMENT_PORT (int): Port for local frontend development.
        DEBUG (bool): Whether debug mode is enabled.
        LOG_LEVEL (str): The logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        POSTGRES_HOST (str): The PostgreSQL server hostname.
        POSTGRES_DB (str): The PostgreSQL database name.
        POSTGRES_USER (str): The PostgreSQL username.
        POSTGRES_PASSWORD (str): The PostgreSQL password.
        SQLALCHEMY_ASYNC_DATABASE_URI (Optional[PostgresDsn]): The SQLAlchemy async database URI.
        CREATE_TABLES_ON_STARTUP (bool): Whether to create missing tables when the app starts.
        STRIPE_ENABLED (bool): Whether the Stripe integration is enabled.
        STRIPE_SECRET_KEY (Optional[str]): The Stripe secret API key.
        STRIPE_WEBHOOK_SECRET (Optional[str]): The signing secret of the Stripe webhook endpoint.
        STRIPE_API_VERSION (Optional[str]): Pinned Stripe API version, SDK default when unset.
        BILLING_SUBSCRIPTIONS_ENABLED (bool): Whether customers get a subscription on signup.
        BILLING_TRIAL_ENABLED (bool): Whether the starter subscription starts with a trial.
        BILLING_TRIAL_DURATION_DAYS (int): Trial length in days.
        BILLING_DEFAULT_PLAN (Optional[str]): Slug of the plan new customers are put on.
        BILLING_PLANS_FILE (Optional[str]): JSON file with the declared plan catalog.
        BILLING_SYNC_ON_STARTUP (bool): Whether the plan catalog is synced when the app starts.
        BILLING_SYNC_TOKEN (Optional[str]): Token required by POST /billing/sync, the route is
            disabled when unset.

        # Billing redirect paths, relative paths are resolved against the app URL
        CHECKOUT_SUCCESS_URL (str): Where checkout redirects after a successful purchase.
        CHECKOUT_CANCEL_URL (str): Where checkout redirects after an aborted purchase.
        PORTAL_RETURN_URL (str): Where the billing portal returns to.
        END_SUBSCRIPTION_URL (str): Page shown once a subscription has ended.
        APP_FULL_URL (Optional[str]): The full URL of the frontend app.
    """

    PROJECT_NAME: str = "Tollgate"
    LOCAL_DEVELOPMENT: bool = False
    ENVIRONMENT: str = "local"
    FRONTEND_LOCAL_DEVELOPMENT_PORT: int = 8080

    # Debug configuration
    DEBUG: bool = False

    # Logging configuration
    LOG_LEVEL: str = "INFO"

    POSTGRES_HOST: str = "localhost"
    POSTGRES_DB: str = "tollgate"
    POSTGRES_USER: str = "tollgate"
    POSTGRES_PASSWORD: str = "tollgate"
    SQLALCHEMY_ASYNC_DATABASE_URI: Optional[PostgresDsn] = Field(
        default=None, validate_default=True
    )

    CREATE_TABLES_ON_STARTUP: bool = False

    # Stripe configuration
    STRIPE_ENABLED: bool = False
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: Optional[str] = None
    STRIPE_API_VERSION: Optional[str] = None

    # Subscription provisioning
    BILLING_SUBSCRIPTIONS_ENABLED: bool = True
    BILLING_TRIAL_ENABLED: bool = True
    BILLING_TRIAL_DURATION_DAYS: int = 14
    BILLING_DEFAULT_PLAN: Optional[str] = "free"
    BILLING_PLANS_FILE: Optional[str] = None
    BILLING_SYNC_ON_STARTUP: bool = True
    BILLING_SYNC_TOKEN: Optional[str] = None

    CHECKOUT_SUCCESS_URL: str = "/app/settings/organization/billing?state=success"
    CHECKOUT_CANCEL_URL: str = "/app/settings/organization/billing?state=cancel"
    PORTAL_RETURN_URL: str = "/app/settings/organization/billing?state=return"
    END_SUBSCRIPTION_URL: str = "/app/upgrade"

    APP_FULL_URL: Optional[str] = None

    @model_validator(mode="after")
    def validate_stripe_settings(self) -> "Settings":
        """Validate Stripe keys when STRIPE_ENABLED is True.

        Returns:
        -------
            Settings: The validated settings.

        Raises:
        ------
            ValueError: If STRIPE_ENABLED is True and a Stripe key is empty.
        """
        if self.STRIPE_ENABLED:
            for field_name in ("STRIPE_SECRET_KEY", "STRIPE_WEBHOOK_SECRET"):
                if not getattr(self, field_name):
                    raise ValueError(f"{field_name} must be set when STRIPE_ENABLED is True")
        return self

    @field_validator("BILLING_TRIAL_DURATION_DAYS", mode="after")
    def validate_trial_duration(cls, v: int) -> int:
        """Reject negative trial lengths."""
        if v < 0:
            raise ValueError("BILLING_TRIAL_DURATION_DAYS must not be negative")
        return v

    @field_validator("SQLALCHEMY_ASYNC_DATABASE_URI", mode="before")
    def assemble_db_connection(cls, v: Optional[str], info: ValidationInfo) -> PostgresDsn:
        """Build the SQLAlchemy database URI.

        Args:
        ----
            v (Optional[str]): The value of the SQLALCHEMY_DATABASE_URI setting.
            info (ValidationInfo): The validation context containing all field values.

        Returns:
        -------
            PostgresDsn: The assembled SQLAlchemy async database URI.

        """
        if isinstance(v, str):
            return v

        return PostgresDsn.build(
            scheme="postgresql+asyncpg",
            username=info.data.get("POSTGRES_USER"),
            password=info.data.get("POSTGRES_PASSWORD"),
            host=info.data.get("POSTGRES_HOST", "localhost"),
            path=f"{info.data.get('POSTGRES_DB') or ''}",
        )

    @property
    def app_url(self) -> str:
        """The app URL.

        Returns:
            str: The app URL.
        """
        if self.APP_FULL_URL:
            return self.APP_FULL_URL

        if self.ENVIRONMENT == "local":
            return f"http://localhost:{self.FRONTEND_LOCAL_DEVELOPMENT_PORT}"
        if self.ENVIRONMENT == "prd":
            return "https://app.tollgate.dev"
        return f"https://app.{self.ENVIRONMENT}-tollgate.dev"

    def absolute_url(self, path: str) -> str:
        """Resolve a billing path against the app URL unless it is already absolute."""
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.app_url.rstrip('/')}/{path.lstrip('/')}"


settings = Settings()
