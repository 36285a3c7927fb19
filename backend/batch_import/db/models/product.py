"""SQLAlchemy model for product records created by imports."""

from sqlalchemy import JSON, Boolean, Column, ForeignKey, Index, Integer, Numeric, String, Text, func
from sqlalchemy.types import DateTime

from batch_import.db.base import Base


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True)
    sku = Column(String(64), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    catalog_id = Column(Integer, ForeignKey("catalogs.id"), nullable=True)
    category = Column(String(255))
    price = Column(Numeric(12, 2), nullable=False)
    cost_price = Column(Numeric(12, 2))
    sale_price = Column(Numeric(12, 2))
    minimum_price = Column(Numeric(12, 2))
    tags = Column(JSON, nullable=False, default=list)
    attributes = Column(JSON, nullable=False, default=dict)
    active = Column(Boolean, nullable=False, default=True)
    is_deleted = Column(Boolean, nullable=False, default=False, index=True)
    # "<job_id>:<row_number>" of the import row that created the product
    import_key = Column(String(64), unique=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (Index("ix_products_sku_lower", func.lower(sku), unique=True),)
