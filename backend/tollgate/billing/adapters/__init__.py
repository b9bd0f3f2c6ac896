"""Payment vendor and persistence adapters."""

from .persistence import PaymentDatabaseAdapter
from .sqlalchemy_adapter import SQLAlchemyDatabaseAdapter
from .stripe_adapter import StripeVendorAdapter
from .vendor import PaymentVendorAdapter

__all__ = [
    "PaymentDatabaseAdapter",
    "PaymentVendorAdapter",
    "SQLAlchemyDatabaseAdapter",
    "StripeVendorAdapter",
]
