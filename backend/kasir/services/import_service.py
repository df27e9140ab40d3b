# Overview: Service-layer inventory import; parse rows, reconcile SKUs, insert/restock per row.

from __future__ import annotations

import csv
import io
import os
import threading
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Iterable, Sequence

from flask import current_app

from ..extensions import db
from ..models.inventory import DEFAULT_MIN_STOCK
from . import change_feed
from .batch_jobs import ProgressCallback, ProgressTracker, is_cancelled
from .concurrency import run_in_savepoint
from .products_service import create_product, get_products_by_skus
from .stock_service import increase_stock


INVENTORY_HEADER = ["Name", "SKU", "Price", "Stock", "MinStock", "Category", "Description"]
MIN_COLUMNS = 4
FIRST_DATA_LINE = 2

EXCEL_EXTENSIONS = {"xlsx", "xlsm", "xltx", "xltm"}


class ImportParseError(ValueError):
    """A single row could not be turned into a product."""


@dataclass(frozen=True)
class RowError:
    line_number: int
    message: str

    def __str__(self) -> str:
        return f"Line {self.line_number}: {self.message}"


@dataclass(frozen=True)
class ProductDraft:
    """A parsed import row, not yet persisted."""

    name: str
    sku: str
    price: int
    stock: int
    min_stock: int = DEFAULT_MIN_STOCK
    category: str = ""
    description: str = ""
    line_number: int = 0

    def to_payload(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "sku": self.sku or None,
            "price": self.price,
            "stock": self.stock,
            "min_stock": self.min_stock,
            "category": self.category,
            "description": self.description,
        }


@dataclass(frozen=True)
class ExistingProduct:
    """The stored product an import row collided with (plain values, safe across sessions)."""

    id: int
    name: str
    sku: str
    stock: int

    @classmethod
    def from_product(cls, product) -> "ExistingProduct":
        return cls(id=product.id, name=product.name, sku=product.sku or "", stock=product.stock)


@dataclass(frozen=True)
class DuplicateProduct:
    import_product: ProductDraft
    existing_product: ExistingProduct
    add_stock: int


@dataclass
class Reconciliation:
    new_products: list[ProductDraft] = field(default_factory=list)
    duplicates: list[DuplicateProduct] = field(default_factory=list)
    errors: list[RowError] = field(default_factory=list)
    parsed_count: int = 0

    @property
    def has_duplicates(self) -> bool:
        return bool(self.duplicates)


@dataclass
class ImportResult:
    imported_count: int = 0
    stock_updated_count: int = 0
    errors: list[RowError] = field(default_factory=list)
    cancelled: bool = False
    message: str = ""


# -----------------------------
# Row parsing
# -----------------------------

def _cell(fields: Sequence[Any], index: int) -> str:
    if index >= len(fields) or fields[index] is None:
        return ""
    return str(fields[index]).strip()


def _parse_whole_number(column: str, raw: str, *, strip_separators: bool = False) -> int:
    value = raw.replace(",", "").replace(".", "") if strip_separators else raw
    if value.startswith("-") and value[1:].isdigit():
        raise ImportParseError(f"{column} must not be negative: {raw}")
    if not (value.isascii() and value.isdigit()):
        raise ImportParseError(f"Invalid {column} format: {raw}")
    return int(value)


def parse_product_row(fields: Sequence[Any], line_number: int = 0) -> ProductDraft:
    """
    Turn one row of the 7-column inventory layout into a ProductDraft.

    Name, Price and Stock are mandatory. Price may carry thousand separators
    ("12.500", "12,500"); Stock and MinStock are plain integers. A blank
    MinStock means the default of 5.
    """
    if len(fields) < MIN_COLUMNS:
        raise ImportParseError(f"Incomplete row (at least {MIN_COLUMNS} columns required)")

    name = _cell(fields, 0)
    sku = _cell(fields, 1)
    price_raw = _cell(fields, 2)
    stock_raw = _cell(fields, 3)
    min_stock_raw = _cell(fields, 4)

    if not name:
        raise ImportParseError("Name must not be blank")
    if not price_raw:
        raise ImportParseError("Price must not be blank")
    if not stock_raw:
        raise ImportParseError("Stock must not be blank")

    price = _parse_whole_number("Price", price_raw, strip_separators=True)
    stock = _parse_whole_number("Stock", stock_raw)
    min_stock = _parse_whole_number("MinStock", min_stock_raw) if min_stock_raw else DEFAULT_MIN_STOCK

    return ProductDraft(
        name=name,
        sku=sku,
        price=price,
        stock=stock,
        min_stock=min_stock,
        category=_cell(fields, 5),
        description=_cell(fields, 6),
        line_number=line_number,
    )


def parse_rows(
    rows: Iterable[Sequence[Any]], *, start_line: int = FIRST_DATA_LINE
) -> tuple[list[ProductDraft], list[RowError]]:
    """Parse every row independently; blank rows are skipped but still counted as lines."""
    drafts: list[ProductDraft] = []
    errors: list[RowError] = []

    for line_number, fields in enumerate(rows, start=start_line):
        fields = list(fields or [])
        if all(_cell(fields, i) == "" for i in range(len(fields))):
            continue
        try:
            drafts.append(parse_product_row(fields, line_number))
        except ImportParseError as exc:
            errors.append(RowError(line_number, str(exc)))

    return drafts, errors


def reconcile(rows: Iterable[Sequence[Any]], *, start_line: int = FIRST_DATA_LINE) -> Reconciliation:
    """
    Parse rows and split them into new products and duplicates of stored ones.

    A row whose SKU already exists in the store is a duplicate of that store
    record, however often the SKU repeats in the file. A SKU that is new to
    the store but repeats within the file is imported once (first
    occurrence); later occurrences become row errors.
    """
    drafts, errors = parse_rows(rows, start_line=start_line)

    existing_by_sku = {
        p.sku: ExistingProduct.from_product(p)
        for p in get_products_by_skus(d.sku for d in drafts)
    }

    result = Reconciliation(errors=errors, parsed_count=len(drafts))
    seen_new_skus: set[str] = set()

    for draft in drafts:
        existing = existing_by_sku.get(draft.sku) if draft.sku else None
        if existing is not None:
            result.duplicates.append(
                DuplicateProduct(import_product=draft, existing_product=existing, add_stock=draft.stock)
            )
            continue
        if draft.sku and draft.sku in seen_new_skus:
            result.errors.append(RowError(draft.line_number, f"Duplicate SKU in file: {draft.sku}"))
            continue
        if draft.sku:
            seen_new_skus.add(draft.sku)
        result.new_products.append(draft)

    result.errors.sort(key=lambda e: e.line_number)
    return result


# -----------------------------
# Confirmation
# -----------------------------

def _summary_message(imported: int, restocked: int) -> str:
    parts = []
    if imported:
        parts.append(f"{imported} new products imported")
    if restocked:
        parts.append(f"{restocked} products restocked")
    return ", ".join(parts) if parts else "No products imported"


def confirm_import(
    reconciliation: Reconciliation,
    *,
    update_duplicate_stock: bool,
    progress: ProgressCallback | None = None,
    cancel_event: threading.Event | None = None,
) -> ImportResult:
    """
    Insert the new products and, if asked, add the duplicates' stock.

    Every row runs in its own savepoint and is committed on its own; a
    failing row is recorded in `errors` and the rest continue; a locked
    database is retried before the row counts as failed. Duplicates
    are left untouched when update_duplicate_stock is False.
    """
    duplicates = reconciliation.duplicates if update_duplicate_stock else []
    tracker = ProgressTracker(len(reconciliation.new_products) + len(duplicates), progress)
    result = ImportResult(errors=list(reconciliation.errors))
    created_ids: list[int] = []
    restocked_ids: list[int] = []

    for draft in reconciliation.new_products:
        if is_cancelled(cancel_event):
            result.cancelled = True
            break
        try:
            product = run_in_savepoint(partial(create_product, draft.to_payload(), commit=False), "import product")
        except Exception as exc:  # noqa: BLE001
            db.session.rollback()
            result.errors.append(RowError(draft.line_number, f"Product '{draft.name}': {exc}"))
            current_app.logger.warning("Import of line %s failed: %s", draft.line_number, exc)
            tracker.row_done(False)
            continue
        created_ids.append(product.id)
        result.imported_count += 1
        tracker.row_done(True)

    for duplicate in duplicates:
        if result.cancelled or is_cancelled(cancel_event):
            result.cancelled = True
            break
        existing = duplicate.existing_product
        try:
            run_in_savepoint(partial(increase_stock, existing.id, duplicate.add_stock), "restock product")
        except Exception as exc:  # noqa: BLE001
            db.session.rollback()
            result.errors.append(
                RowError(duplicate.import_product.line_number, f"Stock update '{existing.name}': {exc}")
            )
            current_app.logger.warning("Restock of %s failed: %s", existing.name, exc)
            tracker.row_done(False)
            continue
        restocked_ids.append(existing.id)
        result.stock_updated_count += 1
        tracker.row_done(True)

    result.errors.sort(key=lambda e: e.line_number)
    result.message = _summary_message(result.imported_count, result.stock_updated_count)
    current_app.logger.info(
        "Inventory import: %s%s, %s row errors",
        result.message, " (cancelled)" if result.cancelled else "", len(result.errors),
    )

    if created_ids:
        change_feed.publish(change_feed.PRODUCT_CREATED, {"product_ids": created_ids})
    if restocked_ids:
        change_feed.publish(change_feed.PRODUCT_STOCK_CHANGED, {"product_ids": restocked_ids})
    return result


# -----------------------------
# Files
# -----------------------------

def _cell_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _extension(source, filename: str | None) -> str:
    name = filename or (os.fspath(source) if isinstance(source, (str, os.PathLike)) else "")
    return name.rsplit(".", 1)[-1].lower() if "." in name else "csv"


def read_inventory_file(source, *, filename: str | None = None) -> list[list[str]]:
    """
    Read an inventory sheet (CSV or Excel) into rows of strings, header removed.

    `source` is a path or a binary stream; for streams pass `filename` so the
    format can be told from its extension.
    """
    ext = _extension(source, filename)

    if ext in EXCEL_EXTENSIONS:
        from openpyxl import load_workbook
        wb = load_workbook(source, read_only=True, data_only=True)
        try:
            data = list(wb.active.values)
        finally:
            wb.close()
        return [[_cell_text(v) for v in row] for row in data[1:]]

    if ext != "csv":
        raise ImportParseError(f"Unsupported file format: {ext}")

    if isinstance(source, (str, os.PathLike)):
        with open(source, newline="", encoding="utf-8-sig") as fh:
            data = list(csv.reader(fh))
    else:
        raw = source.read()
        text = raw.decode("utf-8-sig") if isinstance(raw, bytes) else raw
        data = list(csv.reader(io.StringIO(text)))
    return data[1:]


def inventory_template_rows() -> list[list[str]]:
    return [
        INVENTORY_HEADER,
        ["Contoh Produk 1", "SKU001", "50000", "100", "10", "Elektronik", "Deskripsi produk pertama"],
        ["Contoh Produk 2", "SKU002", "75000", "50", "5", "Makanan", "Deskripsi produk kedua"],
        ["Contoh Produk 3", "", "25000", "200", "", "", ""],
    ]


def write_inventory_template(stream) -> None:
    writer = csv.writer(stream)
    writer.writerows(inventory_template_rows())
