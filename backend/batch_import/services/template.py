"""Downloadable CSV template matching what the row validator accepts."""

from __future__ import annotations

import csv
import io

from batch_import.services.catalog_schema import AttributeKind, AttributeSpec, CatalogSchema
from batch_import.services.csv_source import REQUIRED_MARKER
from batch_import.services.row_validator import BASE_COLUMNS

EXAMPLE_VALUES = {
    "sku": "SKU-12345",
    "name": "Example Product",
    "description": "This is an example product description.",
    "category": "Example Category",
    "price": "249.99",
    "cost_price": "100.00",
    "sale_price": "199.99",
    "minimum_price": "150.00",
    "status": "active",
    "tags": "example,product,sample",
}


def _header(name: str, required: bool) -> str:
    return f"{name}{REQUIRED_MARKER}" if required else name


def _example_attribute_value(attribute: AttributeSpec) -> str:
    if attribute.kind is AttributeKind.NUMBER:
        return "1"
    if attribute.options:
        if attribute.kind is AttributeKind.MULTISELECT:
            return ",".join(attribute.options[:2])
        return attribute.options[0]
    return "Example"


def template_filename(schema: CatalogSchema) -> str:
    label = (schema.catalog_name or "generic").strip().lower().replace(" ", "_")
    return f"product_upload_template_{label}.csv"


def build_template(schema: CatalogSchema) -> str:
    """Header row plus one example row; required columns carry a trailing ``*``."""
    attributes = sorted(schema.attributes.values(), key=lambda a: a.name)
    headers = [_header(spec.name, spec.required) for spec in BASE_COLUMNS]
    headers += [_header(attribute.column, attribute.required) for attribute in attributes]
    example = [EXAMPLE_VALUES.get(spec.name, "") for spec in BASE_COLUMNS]
    example += [_example_attribute_value(attribute) for attribute in attributes]

    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(headers)
    writer.writerow(example)
    return buffer.getvalue()
