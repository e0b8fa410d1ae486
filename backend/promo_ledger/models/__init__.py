from promo_ledger.db.base import Base  # noqa: F401
from promo_ledger.models.promo import (  # noqa: F401
    DecisionStatus,
    DiscountType,
    PromoCode,
    PromoCodeEvent,
    PromoCodeEventType,
    RedeemOutcome,
)
from promo_ledger.models.user import AdminRole, AdminUser  # noqa: F401

__all__ = [
    "Base",
    "DecisionStatus",
    "DiscountType",
    "PromoCode",
    "PromoCodeEvent",
    "PromoCodeEventType",
    "RedeemOutcome",
    "AdminRole",
    "AdminUser",
]
