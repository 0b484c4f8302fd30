"""SQLAlchemy ORM models for the feature gateway.

All models are exported from this module for convenient imports:
    from app.models import Feature, Provider, UsageLog, ...

Models are organized by domain:
- catalog.py: Provider (Tier 0), Feature (Tier 1)
- entitlement.py: Subscription, UserAccess (Tier 2)
- ledger.py: CreditBalance (Tier 0), CreditTransaction (Tier 3 - append-only)
- usage.py: UsageLog (Tier 2 - append-only)
- alert.py: AdminAlert (Tier 0)
"""

from app.models.alert import AdminAlert, AlertSeverity, AlertType
from app.models.base import Base, TimestampMixin, UTCDateTime, utc_now
from app.models.catalog import (
    Feature,
    FeatureCategory,
    FeatureStatus,
    Provider,
    ProviderStatus,
    ProviderType,
)
from app.models.entitlement import Subscription, UserAccess
from app.models.ledger import CreditBalance, CreditTransaction, TransactionType
from app.models.usage import UsageLog

__all__ = [
    # Base classes
    "Base",
    "TimestampMixin",
    "UTCDateTime",
    "utc_now",
    # Catalog
    "Feature",
    "FeatureCategory",
    "FeatureStatus",
    "Provider",
    "ProviderStatus",
    "ProviderType",
    # Entitlement
    "Subscription",
    "UserAccess",
    # Ledger
    "CreditBalance",
    "CreditTransaction",
    "TransactionType",
    # Usage
    "UsageLog",
    # Alerts
    "AdminAlert",
    "AlertSeverity",
    "AlertType",
]
