"""
Promotion model

Promotions are managed by the storefront's promotions admin; this service
only reads them. Empty scope lists mean the promotion applies to every item.
"""
from datetime import datetime, timezone
from sqlalchemy import Column, Integer, String, Boolean, DateTime, Numeric, JSON, Enum as SQLEnum
import enum

from tireledger.core.database import Base


class PromotionType(str, enum.Enum):
    PERCENTAGE = "PERCENTAGE"
    FIXED = "FIXED"
    FREE_SHIPPING = "FREE_SHIPPING"


class Promotion(Base):
    __tablename__ = "promotions"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(50), unique=True, index=True, nullable=False)
    name = Column(String(200), nullable=False)

    type = Column(SQLEnum(PromotionType), nullable=False)
    value = Column(Numeric(10, 2), nullable=False, default=0)
    min_purchase_amount = Column(Numeric(12, 2), nullable=True)

    # Eligibility scope
    product_ids = Column(JSON, default=list)
    brand_ids = Column(JSON, default=list)
    category_ids = Column(JSON, default=list)
    model_ids = Column(JSON, default=list)

    is_active = Column(Boolean, nullable=False, default=True)
    starts_at = Column(DateTime(timezone=True), nullable=True)
    ends_at = Column(DateTime(timezone=True), nullable=True)

    def is_current(self, now: datetime = None) -> bool:
        """Active and inside its date window."""
        if not self.is_active:
            return False
        now = now or datetime.now(timezone.utc)
        if self.starts_at and _aware(self.starts_at) > now:
            return False
        if self.ends_at and _aware(self.ends_at) < now:
            return False
        return True

    def __repr__(self):
        return f"<Promotion {self.code}: {self.type} {self.value}>"


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
