"""Attribute schema of a target catalog, loaded once per import run."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

from sqlalchemy import or_, select
from sqlalchemy.orm import Session, selectinload

from batch_import.core.errors import CatalogNotFound
from batch_import.db.models.catalog import Attribute, Catalog

logger = logging.getLogger(__name__)

ATTRIBUTE_PREFIX = "attr_"


class AttributeKind(str, Enum):
    TEXT = "text"
    NUMBER = "number"
    SELECT = "select"
    MULTISELECT = "multiselect"


@dataclass(frozen=True)
class AttributeSpec:
    name: str
    kind: AttributeKind = AttributeKind.SELECT
    required: bool = False
    # Empty means any value is accepted
    options: tuple[str, ...] = ()

    @property
    def column(self) -> str:
        return f"{ATTRIBUTE_PREFIX}{self.name}"

    def match_option(self, value: str) -> str | None:
        """Return the canonical spelling of ``value`` or None when unknown."""
        if not self.options:
            return value
        wanted = value.casefold()
        for option in self.options:
            if option.casefold() == wanted:
                return option
        return None


@dataclass(frozen=True)
class CatalogSchema:
    catalog_id: int | None = None
    catalog_name: str | None = None
    attributes: dict[str, AttributeSpec] = field(default_factory=dict)

    def attribute_for_column(self, column: str) -> AttributeSpec | None:
        """Resolve ``attr_<name>`` or a bare attribute name to its spec."""
        name = column[len(ATTRIBUTE_PREFIX):] if column.startswith(ATTRIBUTE_PREFIX) else column
        return self.attributes.get(name)


def _to_spec(attribute: Attribute) -> AttributeSpec:
    try:
        kind = AttributeKind(attribute.kind)
    except ValueError:
        logger.warning(
            f"Attribute {attribute.name} has unknown kind '{attribute.kind}', treating as select"
        )
        kind = AttributeKind.SELECT
    return AttributeSpec(
        name=attribute.name,
        kind=kind,
        required=bool(attribute.required),
        options=tuple(option.value for option in attribute.options),
    )


def load_catalog_schema(session: Session, catalog_id: int | None) -> CatalogSchema:
    """Global attributes plus the catalog's own; catalog entries win on name clashes."""
    catalog_name = None
    if catalog_id is not None:
        catalog = session.get(Catalog, catalog_id)
        if catalog is None:
            raise CatalogNotFound(catalog_id)
        catalog_name = catalog.name

    query = select(Attribute).options(selectinload(Attribute.options))
    if catalog_id is None:
        query = query.where(Attribute.catalog_id.is_(None))
    else:
        query = query.where(
            or_(Attribute.catalog_id.is_(None), Attribute.catalog_id == catalog_id)
        )

    attributes: dict[str, AttributeSpec] = {}
    # Globals first so catalog-specific definitions overwrite them
    rows = sorted(session.scalars(query).all(), key=lambda a: a.catalog_id is not None)
    for attribute in rows:
        attributes[attribute.name] = _to_spec(attribute)

    return CatalogSchema(catalog_id=catalog_id, catalog_name=catalog_name, attributes=attributes)
