"""Minimal catalog/attribute metadata the importer validates rows against."""

from sqlalchemy import Boolean, Column, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from batch_import.db.base import Base


class Catalog(Base):
    __tablename__ = "catalogs"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Attribute(Base):
    """Product attribute; catalog_id NULL means the attribute applies to every catalog."""

    __tablename__ = "attributes"

    id = Column(Integer, primary_key=True)
    name = Column(String(128), nullable=False)
    display_name = Column(String(255))
    # text | number | select | multiselect
    kind = Column(String(32), nullable=False, default="select")
    required = Column(Boolean, nullable=False, default=False)
    catalog_id = Column(Integer, ForeignKey("catalogs.id"), nullable=True)

    options = relationship(
        "AttributeOption",
        back_populates="attribute",
        cascade="all, delete-orphan",
        order_by="AttributeOption.id",
    )

    __table_args__ = (UniqueConstraint("name", "catalog_id", name="uq_attributes_name_catalog"),)


class AttributeOption(Base):
    __tablename__ = "attribute_options"

    id = Column(Integer, primary_key=True)
    attribute_id = Column(Integer, ForeignKey("attributes.id", ondelete="CASCADE"), nullable=False)
    value = Column(String(255), nullable=False)

    attribute = relationship("Attribute", back_populates="options")
