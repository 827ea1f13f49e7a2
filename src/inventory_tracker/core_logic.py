"""Business logic layer for the inventory tracker.

This module holds the rules that sit on top of the two stores: input
validation, product management, the read-side inventory queries, and the sale
processor that records a sale and deducts stock as one atomic unit. All I/O
goes through :mod:`product_store` and :mod:`sale_store`; transactions are
opened with :func:`data_manager.connection_scope`.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import List, Optional

from sqlalchemy.engine import Engine

from . import data_manager, log
from .constants import CENT, DEFAULT_LOW_STOCK_THRESHOLD, EXPECTED_SCHEMA_VERSION, MAX_STORED_INTEGER
from .data_manager import ProductRow, SaleRow, StorageError
from .product_store import ProductStore
from .sale_store import DateBound, SaleStore, range_end, range_start


class InventoryError(Exception):
    """Base class for every error the inventory tracker raises on purpose."""


class ValidationError(InventoryError, ValueError):
    """Raised for malformed input before any transaction is opened."""


class BusinessRuleViolation(InventoryError):
    """Raised when a requested operation violates a domain constraint."""


class ProductNotFound(BusinessRuleViolation):
    """Raised when a referenced product does not exist."""

    def __init__(self, product_id: int) -> None:
        super().__init__(f"Product not found with ID: {product_id}")
        self.product_id = product_id


class SaleNotFound(BusinessRuleViolation):
    """Raised when a referenced sale does not exist."""

    def __init__(self, sale_id: int) -> None:
        super().__init__(f"Sale not found with ID: {sale_id}")
        self.sale_id = sale_id


class InsufficientStock(BusinessRuleViolation):
    """Raised when a sale asks for more units than the product holds."""

    def __init__(self, product_id: int, requested: int, available: int) -> None:
        super().__init__(
            f"Insufficient stock for product {product_id}: "
            f"requested {requested}, available {available}"
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class ProductHasSales(BusinessRuleViolation):
    """Raised when deleting a product that sales still reference."""

    def __init__(self, product_id: int, sale_count: int) -> None:
        super().__init__(
            f"Product {product_id} is referenced by {sale_count} recorded sale(s) and cannot be deleted"
        )
        self.product_id = product_id
        self.sale_count = sale_count


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration, the engine and the stores used by the BLL."""

    settings: data_manager.ConfigSettings
    engine: Engine
    products: ProductStore
    sales: SaleStore


@dataclass(frozen=True)
class SaleCommand:
    """User intent for selling ``quantity`` units of one product."""

    product_id: int
    quantity: int
    sale_date: Optional[datetime] = None


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` or, when it is ``None``, the current UTC time."""

    return candidate if candidate is not None else datetime.now(UTC)


def build_runtime_context(settings: data_manager.ConfigSettings) -> RuntimeContext:
    """Create the engine and stores for already-parsed settings."""

    engine = data_manager.create_engine_from_settings(settings)
    return RuntimeContext(
        settings=settings,
        engine=engine,
        products=ProductStore(engine),
        sales=SaleStore(engine),
    )


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and open the database for the BLL.

    Resolves ``config.ini``, parses settings, and builds the engine shared by
    both stores. The schema is not created here; see :mod:`setup_db`.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer performs its upward search from
            the current working directory.

    Returns:
        RuntimeContext: Fully populated context ready for orchestration
            functions.

    Raises:
        FileNotFoundError: If the configuration file cannot be located.
        KeyError: When mandatory configuration options are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    context = build_runtime_context(settings)
    log.info("Loaded runtime context for store '%s'", settings.store_name)
    return context


def ensure_schema_version(context: RuntimeContext) -> None:
    """Reject configurations written for a different schema version.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Database schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Database schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def close_context(context: RuntimeContext) -> None:
    """Release every pooled connection held by the context's engine."""

    context.engine.dispose()
    log.debug("Disposed engine for store '%s'", context.settings.store_name)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def _is_integer(value: object) -> bool:
    if not isinstance(value, int) or isinstance(value, bool):
        return False
    return -MAX_STORED_INTEGER - 1 <= value <= MAX_STORED_INTEGER


def require_identifier(value: object, label: str) -> int:
    """Ensure ``value`` is a positive integer id."""

    if not _is_integer(value) or value <= 0:
        log.error("%s validation failed: %r", label, value)
        raise ValidationError(f"{label} must be a positive integer")
    return value


def require_positive_quantity(quantity: object) -> int:
    """Ensure a sale quantity is an integer greater than zero."""

    if not _is_integer(quantity) or quantity <= 0:
        log.error("Quantity validation failed: %r", quantity)
        raise ValidationError("Quantity must be a positive integer")
    return quantity


def require_nonnegative_count(value: object, label: str) -> int:
    """Ensure stock levels and thresholds are integers of zero or more."""

    if not _is_integer(value) or value < 0:
        log.error("%s validation failed: %r", label, value)
        raise ValidationError(f"{label} cannot be negative")
    return value


def require_positive_price(price: object) -> Decimal:
    """Normalize ``price`` to a cent-precise ``Decimal`` greater than zero.

    Raises:
        ValidationError: If the value is not numeric, not positive, or carries
            fractions of a cent.
    """

    if isinstance(price, (bool, float)):
        raise ValidationError("Price must be given as a Decimal, int or numeric string")
    try:
        amount = Decimal(str(price))
    except (InvalidOperation, ValueError) as exc:
        log.error("Price validation failed: %r", price)
        raise ValidationError(f"Invalid price: {price!r}") from exc
    if not amount.is_finite() or amount <= 0:
        log.error("Price validation failed: %r", price)
        raise ValidationError("Price must be positive")
    if amount != amount.quantize(CENT):
        log.error("Price validation failed: %r", price)
        raise ValidationError("Price cannot have fractions of a cent")
    return amount.quantize(CENT)


def require_product_name(name: object) -> str:
    if not isinstance(name, str) or not name.strip():
        log.error("Product name validation failed: %r", name)
        raise ValidationError("Product name cannot be empty")
    return name.strip()


def validate_product(product: ProductRow) -> ProductRow:
    """Return ``product`` with normalized fields, or raise :class:`ValidationError`."""

    return replace(
        product,
        name=require_product_name(product.name),
        price=require_positive_price(product.price),
        quantity=require_nonnegative_count(product.quantity, "Product quantity"),
        low_stock_threshold=require_nonnegative_count(product.low_stock_threshold, "Low stock threshold"),
    )


def compute_sale_total(price: Decimal, quantity: int) -> Decimal:
    """Exact ``price × quantity`` in cents."""

    return (price * Decimal(quantity)).quantize(CENT)


# ---------------------------------------------------------------------------
# Product management
# ---------------------------------------------------------------------------


def add_product(
    context: RuntimeContext,
    *,
    name: str,
    price: Decimal,
    quantity: int = 0,
    low_stock_threshold: int = DEFAULT_LOW_STOCK_THRESHOLD,
    category: Optional[str] = None,
    description: Optional[str] = None,
) -> ProductRow:
    """Validate and persist a new product.

    Raises:
        ValidationError: If name, price, quantity or threshold are invalid.
        StorageError: If the database rejects the insert.
    """
    draft = validate_product(
        ProductRow(
            product_id=None,
            name=name,
            description=description,
            category=category,
            price=price,
            quantity=quantity,
            low_stock_threshold=low_stock_threshold,
        )
    )
    log.info("Adding new product '%s'", draft.name)
    created = context.products.create(draft)
    log.info("Product created with ID %s", created.product_id)
    return created


def update_product(context: RuntimeContext, product: ProductRow) -> ProductRow:
    """Replace an existing product's editable fields.

    Sales already recorded keep their stored totals; only future sales see a
    new price.

    Raises:
        ValidationError: If the record is malformed.
        ProductNotFound: If no product has ``product.product_id``.
    """
    require_identifier(product.product_id, "Product id")
    normalized = validate_product(product)
    log.info("Updating product %s", product.product_id)
    if not context.products.update(normalized):
        log.warning("Update skipped: product %s not found", product.product_id)
        raise ProductNotFound(product.product_id)
    return get_product(context, product.product_id)


def update_quantity(context: RuntimeContext, product_id: int, quantity: int) -> ProductRow:
    """Set a product's stock level directly (restock or correction)."""

    require_identifier(product_id, "Product id")
    require_nonnegative_count(quantity, "Product quantity")
    log.info("Updating quantity for product %s to %s", product_id, quantity)
    if not context.products.update_quantity(product_id, quantity):
        log.warning("Quantity update skipped: product %s not found", product_id)
        raise ProductNotFound(product_id)
    return get_product(context, product_id)


def delete_product(context: RuntimeContext, product_id: int) -> ProductRow:
    """Delete a product that no sale references.

    Raises:
        ProductNotFound: If the product does not exist.
        ProductHasSales: If sales still point at the product.
    """
    require_identifier(product_id, "Product id")
    with data_manager.connection_scope(context.engine) as conn:
        product = context.products.get_by_id(product_id, connection=conn)
        if product is None:
            log.warning("Delete skipped: product %s not found", product_id)
            raise ProductNotFound(product_id)
        sale_count = context.sales.count_by_product(product_id, connection=conn)
        if sale_count:
            log.warning("Refusing to delete product %s referenced by %d sale(s)", product_id, sale_count)
            raise ProductHasSales(product_id, sale_count)
        context.products.delete(product_id, connection=conn)
    log.info("Deleted product %s ('%s')", product_id, product.name)
    return product


# ---------------------------------------------------------------------------
# Inventory queries
# ---------------------------------------------------------------------------


def find_product(context: RuntimeContext, product_id: int) -> Optional[ProductRow]:
    """Return the product or ``None``; absence is not an error here."""

    require_identifier(product_id, "Product id")
    return context.products.get_by_id(product_id)


def get_product(context: RuntimeContext, product_id: int) -> ProductRow:
    """Resolve a product record by its identifier.

    Raises:
        ProductNotFound: If ``product_id`` is absent from the store.
    """
    require_identifier(product_id, "Product id")
    product = context.products.get_by_id(product_id)
    if product is None:
        log.warning("Product lookup failed for id %s", product_id)
        raise ProductNotFound(product_id)
    return product


def list_products(context: RuntimeContext) -> List[ProductRow]:
    log.debug("Fetching all products")
    return context.products.get_all()


def list_products_by_category(context: RuntimeContext, category: str) -> List[ProductRow]:
    log.debug("Fetching products in category '%s'", category)
    return context.products.get_by_category(category)


def search_products(context: RuntimeContext, name_substring: str) -> List[ProductRow]:
    log.debug("Searching products matching '%s'", name_substring)
    return context.products.search(name_substring)


def list_low_stock_products(context: RuntimeContext) -> List[ProductRow]:
    log.debug("Fetching low stock products")
    return context.products.get_low_stock()


def check_low_stock_alerts(context: RuntimeContext) -> List[ProductRow]:
    """Log one warning per product at or below its threshold and return them."""

    low_stock = context.products.get_low_stock()
    for product in low_stock:
        log.warning(
            "Low stock alert: '%s' (ID %s) quantity=%s threshold=%s",
            product.name,
            product.product_id,
            product.quantity,
            product.low_stock_threshold,
        )
    log.info("Low stock check found %d product(s)", len(low_stock))
    return low_stock


# ---------------------------------------------------------------------------
# Sales
# ---------------------------------------------------------------------------


def process_sale(context: RuntimeContext, command: SaleCommand) -> SaleRow:
    """Record a sale and deduct its stock as one atomic unit.

    The product is read, the sale row inserted and the stock decremented on a
    single connection inside one transaction. The decrement is conditional
    (``quantity >= requested`` in the ``UPDATE`` itself), so when a concurrent
    sale consumed the stock after our read the update touches no row and the
    sale fails with :class:`InsufficientStock` instead of driving the quantity
    negative. Leaving the transaction scope with an exception rolls back both
    writes; leaving it normally commits both.

    Args:
        context (RuntimeContext): Runtime context providing the stores.
        command (SaleCommand): Product id, quantity and optional timestamp.

    Returns:
        SaleRow: The committed sale with its id and total amount.

    Raises:
        ValidationError: If the product id or quantity is malformed. Raised
            before the transaction is opened.
        ProductNotFound: If the product does not exist.
        InsufficientStock: If the product holds fewer units than requested,
            either at read time or when the conditional decrement runs.
        StorageError: If the database fails; nothing is persisted.
    """
    product_id = require_identifier(command.product_id, "Product id")
    quantity = require_positive_quantity(command.quantity)
    sale_date = _resolve_timestamp(command.sale_date)

    log.info("Sale attempted for product %s (quantity=%s)", product_id, quantity)
    try:
        with data_manager.connection_scope(context.engine) as conn:
            product = context.products.get_by_id(product_id, connection=conn)
            if product is None:
                raise ProductNotFound(product_id)
            if quantity > product.quantity:
                raise InsufficientStock(product_id, quantity, product.quantity)

            total = compute_sale_total(product.price, quantity)
            sale = context.sales.create(
                SaleRow(
                    sale_id=None,
                    product_id=product_id,
                    quantity_sold=quantity,
                    total_amount=total,
                    sale_date=sale_date,
                ),
                connection=conn,
            )

            if not context.products.decrement_quantity(product_id, quantity, connection=conn):
                current = context.products.get_by_id(product_id, connection=conn)
                if current is None:
                    raise ProductNotFound(product_id)
                raise InsufficientStock(product_id, quantity, current.quantity)
            updated = context.products.get_by_id(product_id, connection=conn)
    except BusinessRuleViolation as exc:
        log.warning("Sale rolled back for product %s: %s", product_id, exc)
        raise
    except StorageError as exc:
        log.error("Sale rolled back for product %s after storage failure: %s", product_id, exc)
        raise

    log.info(
        "Sale %s committed: %s x '%s' for %s",
        sale.sale_id,
        quantity,
        product.name,
        sale.total_amount,
    )
    if updated is not None and updated.is_low_stock:
        log.warning(
            "Low stock detected for '%s' (ID %s): quantity=%s threshold=%s",
            updated.name,
            updated.product_id,
            updated.quantity,
            updated.low_stock_threshold,
        )
    return sale


def delete_sale(context: RuntimeContext, sale_id: int) -> SaleRow:
    """Remove a sale and put its units back into stock in one transaction.

    When the product itself no longer exists the sale is still removed and a
    warning is logged.

    Raises:
        SaleNotFound: If no sale has ``sale_id``.
    """
    require_identifier(sale_id, "Sale id")
    with data_manager.connection_scope(context.engine) as conn:
        sale = context.sales.get_by_id(sale_id, connection=conn)
        if sale is None:
            log.warning("Delete skipped: sale %s not found", sale_id)
            raise SaleNotFound(sale_id)
        context.sales.delete(sale_id, connection=conn)
        restored = context.products.increment_quantity(sale.product_id, sale.quantity_sold, connection=conn)
    if restored:
        log.info("Deleted sale %s and restored %s unit(s) to product %s", sale_id, sale.quantity_sold, sale.product_id)
    else:
        log.warning("Deleted sale %s; product %s no longer exists so no stock was restored", sale_id, sale.product_id)
    return sale


def get_sale(context: RuntimeContext, sale_id: int) -> SaleRow:
    require_identifier(sale_id, "Sale id")
    sale = context.sales.get_by_id(sale_id)
    if sale is None:
        log.warning("Sale lookup failed for id %s", sale_id)
        raise SaleNotFound(sale_id)
    return sale


def list_sales(context: RuntimeContext) -> List[SaleRow]:
    return context.sales.get_all()


def list_sales_by_product(context: RuntimeContext, product_id: int) -> List[SaleRow]:
    require_identifier(product_id, "Product id")
    return context.sales.get_by_product(product_id)


def list_sales_in_range(context: RuntimeContext, start: DateBound, end: DateBound) -> List[SaleRow]:
    """Sales between ``start`` and ``end`` inclusive, newest first."""

    if range_start(start) > range_end(end):
        raise ValidationError("Start date must not be after end date")
    return context.sales.get_by_date_range(start, end)
