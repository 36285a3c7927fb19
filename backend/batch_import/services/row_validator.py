"""Pure validation of one CSV record against a catalog attribute schema.

Raw cells are first parsed into typed cells (text, number, multi-value) and
only then checked, so a malformed value is always reported as a field issue
instead of leaking an exception. Every issue of a row is collected; the
validator never stops at the first problem.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Union

from pydantic import BaseModel, ConfigDict

from batch_import.services.catalog_schema import (
    ATTRIBUTE_PREFIX,
    AttributeKind,
    AttributeSpec,
    CatalogSchema,
)


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class ErrorType(str, Enum):
    PARSE = "parse"
    VALIDATION = "validation"
    APPLY = "apply"
    SYSTEM = "system"


class RowIssue(BaseModel):
    """A problem found while processing one row; field is None for row-level issues."""

    model_config = ConfigDict(frozen=True)

    field: str | None = None
    message: str
    severity: Severity = Severity.ERROR
    error_type: ErrorType = ErrorType.VALIDATION


class ColumnKind(str, Enum):
    TEXT = "text"
    NUMBER = "number"
    MULTI_VALUE = "multi_value"


@dataclass(frozen=True)
class ColumnSpec:
    name: str
    kind: ColumnKind
    required: bool = False


@dataclass(frozen=True)
class TextCell:
    column: str
    value: str


@dataclass(frozen=True)
class NumberCell:
    column: str
    value: Decimal


@dataclass(frozen=True)
class MultiValueCell:
    column: str
    values: tuple[str, ...]


Cell = Union[TextCell, NumberCell, MultiValueCell]


BASE_COLUMNS: tuple[ColumnSpec, ...] = (
    ColumnSpec("sku", ColumnKind.TEXT, required=True),
    ColumnSpec("name", ColumnKind.TEXT, required=True),
    ColumnSpec("description", ColumnKind.TEXT),
    ColumnSpec("category", ColumnKind.TEXT),
    ColumnSpec("price", ColumnKind.NUMBER, required=True),
    ColumnSpec("cost_price", ColumnKind.NUMBER),
    ColumnSpec("sale_price", ColumnKind.NUMBER),
    ColumnSpec("minimum_price", ColumnKind.NUMBER),
    ColumnSpec("status", ColumnKind.TEXT),
    ColumnSpec("tags", ColumnKind.MULTI_VALUE),
)
BASE_COLUMN_NAMES = frozenset(spec.name for spec in BASE_COLUMNS)
REQUIRED_COLUMNS: tuple[str, ...] = tuple(spec.name for spec in BASE_COLUMNS if spec.required)
DEPRECATED_COLUMNS = frozenset({"discount_label", "discount_percentage"})
# Any other status value, or none, publishes the product
DRAFT_STATUS = "draft"

# Plain decimal notation only: no thousands separators, no locale decimal comma
NUMBER_PATTERN = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)$")
MULTI_VALUE_SEPARATOR = ","


class ProductCommand(BaseModel):
    """Normalized product-creation payload handed to the product applier."""

    sku: str
    name: str
    description: str | None = None
    category: str | None = None
    catalog_id: int | None = None
    price: Decimal
    cost_price: Decimal | None = None
    sale_price: Decimal | None = None
    minimum_price: Decimal | None = None
    active: bool = True
    tags: list[str] = []
    attributes: dict[str, str | list[str]] = {}


@dataclass
class RowValidation:
    command: ProductCommand | None
    issues: list[RowIssue] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.command is not None

    @property
    def errors(self) -> list[RowIssue]:
        return [issue for issue in self.issues if issue.severity is Severity.ERROR]


def _clean(value: object) -> str:
    return value.strip() if isinstance(value, str) else ""


def parse_number(raw: str) -> Decimal | None:
    """Parse ``raw`` with locale-independent rules; None when it is not a number."""
    text = raw.strip()
    if not NUMBER_PATTERN.match(text):
        return None
    try:
        return Decimal(text)
    except InvalidOperation:
        return None


def split_values(raw: str) -> tuple[str, ...]:
    values: list[str] = []
    for part in raw.split(MULTI_VALUE_SEPARATOR):
        value = part.strip()
        if value and value not in values:
            values.append(value)
    return tuple(values)


def _parse_base_cell(spec: ColumnSpec, raw: str) -> Cell | RowIssue:
    if spec.kind is ColumnKind.NUMBER:
        number = parse_number(raw)
        if number is None:
            return RowIssue(field=spec.name, message=f"{spec.name} must be a number, got '{raw}'")
        if number < 0:
            return RowIssue(field=spec.name, message=f"{spec.name} cannot be negative")
        return NumberCell(spec.name, number)
    if spec.kind is ColumnKind.MULTI_VALUE:
        return MultiValueCell(spec.name, split_values(raw))
    return TextCell(spec.name, raw)


def _attribute_raw(values: Mapping[str, str | None], attribute: AttributeSpec) -> str:
    raw = _clean(values.get(attribute.column))
    if not raw and attribute.name not in BASE_COLUMN_NAMES:
        raw = _clean(values.get(attribute.name))
    return raw


def _parse_attribute_cell(attribute: AttributeSpec, raw: str) -> tuple[Cell | None, list[RowIssue]]:
    if attribute.kind is AttributeKind.TEXT:
        return TextCell(attribute.name, raw), []

    if attribute.kind is AttributeKind.NUMBER:
        number = parse_number(raw)
        if number is None:
            return None, [
                RowIssue(field=attribute.name, message=f"{attribute.name} must be a number, got '{raw}'")
            ]
        return NumberCell(attribute.name, number), []

    issues: list[RowIssue] = []
    accepted: list[str] = []
    values = split_values(raw)
    if attribute.kind is AttributeKind.SELECT and len(values) > 1:
        issues.append(
            RowIssue(
                field=attribute.name,
                message=f"{attribute.name} accepts a single value, got {len(values)}",
            )
        )
    for value in values:
        option = attribute.match_option(value)
        if option is None:
            issues.append(
                RowIssue(
                    field=attribute.name,
                    message=f"Unknown {attribute.name} option '{value}'",
                )
            )
        else:
            accepted.append(option)
    if issues:
        return None, issues
    return MultiValueCell(attribute.name, tuple(accepted)), []


def _pricing_issues(cells: dict[str, Cell]) -> list[RowIssue]:
    def amount(column: str) -> Decimal | None:
        cell = cells.get(column)
        return cell.value if isinstance(cell, NumberCell) else None

    price, sale_price, cost_price = amount("price"), amount("sale_price"), amount("cost_price")
    minimum_price = amount("minimum_price")
    issues: list[RowIssue] = []
    if sale_price is not None and price is not None and sale_price > price:
        issues.append(
            RowIssue(field="sale_price", message="Sale price cannot be greater than regular price")
        )
    if sale_price is not None and minimum_price is not None and sale_price < minimum_price:
        issues.append(
            RowIssue(field="sale_price", message="Sale price cannot be less than minimum price")
        )
    if sale_price is not None and cost_price is not None and sale_price < cost_price:
        issues.append(
            RowIssue(
                field="sale_price",
                message="Sale price is below cost price",
                severity=Severity.WARNING,
            )
        )
    return issues


def _ignored_column_issues(
    values: Mapping[str, str | None], schema: CatalogSchema
) -> list[RowIssue]:
    issues: list[RowIssue] = []
    for column, raw in values.items():
        if column in BASE_COLUMN_NAMES or not _clean(raw):
            continue
        if schema.attribute_for_column(column) is not None:
            continue
        if column in DEPRECATED_COLUMNS:
            message = f"Column '{column}' is deprecated and was ignored"
        elif column.startswith(ATTRIBUTE_PREFIX):
            message = f"Attribute '{column[len(ATTRIBUTE_PREFIX):]}' is not defined for this catalog and was ignored"
        else:
            message = f"Unknown column '{column}' was ignored"
        issues.append(RowIssue(field=column, message=message, severity=Severity.WARNING))
    return issues


def _attribute_value(cell: Cell) -> str | list[str]:
    if isinstance(cell, NumberCell):
        return str(cell.value)
    if isinstance(cell, MultiValueCell):
        return list(cell.values)
    return cell.value


def validate_row(values: Mapping[str, str | None], schema: CatalogSchema) -> RowValidation:
    """Validate one record; return a ProductCommand or every issue found."""
    issues: list[RowIssue] = []
    cells: dict[str, Cell] = {}

    for spec in BASE_COLUMNS:
        raw = _clean(values.get(spec.name))
        if not raw:
            if spec.required:
                issues.append(RowIssue(field=spec.name, message=f"{spec.name} is required"))
            continue
        parsed = _parse_base_cell(spec, raw)
        if isinstance(parsed, RowIssue):
            issues.append(parsed)
        else:
            cells[spec.name] = parsed

    attribute_cells: dict[str, Cell] = {}
    for attribute in schema.attributes.values():
        raw = _attribute_raw(values, attribute)
        if not raw:
            if attribute.required:
                issues.append(RowIssue(field=attribute.name, message=f"{attribute.name} is required"))
            continue
        cell, attribute_issues = _parse_attribute_cell(attribute, raw)
        issues.extend(attribute_issues)
        if cell is not None:
            attribute_cells[attribute.name] = cell

    issues.extend(_pricing_issues(cells))
    issues.extend(_ignored_column_issues(values, schema))

    if any(issue.severity is Severity.ERROR for issue in issues):
        return RowValidation(command=None, issues=issues)

    def text(column: str) -> str | None:
        cell = cells.get(column)
        return cell.value if isinstance(cell, TextCell) else None

    def number(column: str) -> Decimal | None:
        cell = cells.get(column)
        return cell.value if isinstance(cell, NumberCell) else None

    tags = cells.get("tags")
    command = ProductCommand(
        sku=text("sku"),
        name=text("name"),
        description=text("description"),
        category=text("category"),
        catalog_id=schema.catalog_id,
        price=number("price"),
        cost_price=number("cost_price"),
        sale_price=number("sale_price"),
        minimum_price=number("minimum_price"),
        active=(text("status") or "").lower() != DRAFT_STATUS,
        tags=list(tags.values) if isinstance(tags, MultiValueCell) else [],
        attributes={name: _attribute_value(cell) for name, cell in attribute_cells.items()},
    )
    return RowValidation(command=command, issues=issues)
