"""
Product model

Read-only projection of the storefront catalog. Only the columns the
ledger, pricing and packaging need are mapped; catalog CRUD lives in the
storefront.
"""
from sqlalchemy import Column, Integer, String, Boolean, Numeric, Float, CheckConstraint
from sqlalchemy.orm import relationship

from tireledger.core.database import Base


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    sku = Column(String(50), unique=True, index=True)
    name = Column(String(500), nullable=False, index=True)

    # Pricing - Numeric(12,2) for money
    retail_price = Column(Numeric(12, 2), nullable=False)
    discount = Column(Numeric(5, 2), nullable=False, default=0)  # catalog discount, percent

    # Shipping attributes (null = use packaging defaults)
    weight_kg = Column(Float, nullable=True)
    length_cm = Column(Float, nullable=True)
    width_cm = Column(Float, nullable=True)
    height_cm = Column(Float, nullable=True)

    # Promotion scoping
    brand_id = Column(Integer, nullable=True, index=True)
    category_id = Column(Integer, nullable=True, index=True)
    model_id = Column(Integer, nullable=True, index=True)

    is_visible = Column(Boolean, nullable=False, default=True)
    is_discontinued = Column(Boolean, nullable=False, default=False)

    inventory = relationship("InventoryRecord", back_populates="product")

    __table_args__ = (
        CheckConstraint("discount >= 0 AND discount <= 100", name="chk_product_discount"),
    )

    def __repr__(self):
        return f"<Product {self.id}: {self.name}>"
