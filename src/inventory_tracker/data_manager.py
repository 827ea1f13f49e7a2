"""Data access layer foundation for the inventory tracker.

This module owns everything the stores share and nothing that belongs to the
business rules:

1. Configuration handling: finding and parsing ``config.ini``.
2. Engine lifecycle: building a SQLAlchemy engine from explicit settings and
   creating the relational schema.
3. Transaction scoping: a context manager that hands out a connection bound
   to a single transaction and translates driver failures into
   :class:`StorageError`.
4. Row types: immutable dataclasses mirroring the ``products`` and ``sales``
   tables, plus the converters that build them from result rows.
"""


from __future__ import annotations

import configparser
import os
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Iterator, Mapping, Optional

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    create_engine,
)
from sqlalchemy.engine import Connection, Engine, make_url
from sqlalchemy.exc import ArgumentError, SQLAlchemyError

from . import log
from .constants import CENT, DATABASE_URL_ENV, DEFAULT_LOW_STOCK_THRESHOLD, StockStatus


CONFIG_FILE_NAME = "config.ini"
DEFAULT_BUSY_TIMEOUT = 30.0


class StorageError(Exception):
    """Raised when the persistence layer fails (connectivity, constraints, timeouts)."""


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    database_url: str
    store_name: str
    schema_version: str
    echo: bool = False
    busy_timeout: float = DEFAULT_BUSY_TIMEOUT


@dataclass(frozen=True)
class ProductRow:
    """In-memory view of a row from the ``products`` table."""

    product_id: Optional[int]
    name: str
    price: Decimal
    quantity: int = 0
    low_stock_threshold: int = DEFAULT_LOW_STOCK_THRESHOLD
    category: Optional[str] = None
    description: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_low_stock(self) -> bool:
        return self.quantity <= self.low_stock_threshold

    @property
    def is_out_of_stock(self) -> bool:
        return self.quantity <= 0

    @property
    def stock_status(self) -> StockStatus:
        if self.is_out_of_stock:
            return StockStatus.OUT_OF_STOCK
        if self.is_low_stock:
            return StockStatus.LOW_STOCK
        return StockStatus.IN_STOCK


@dataclass(frozen=True)
class SaleRow:
    """In-memory view of a row from the ``sales`` table.

    ``product_name`` is resolved through a join when the row is read and is
    ``None`` for sales whose product no longer exists.
    """

    sale_id: Optional[int]
    product_id: int
    quantity_sold: int
    total_amount: Decimal
    sale_date: Optional[datetime] = None
    product_name: Optional[str] = None


@dataclass(frozen=True)
class MonthlyTotals:
    """Aggregate sale figures for one calendar month."""

    month: int
    transactions: int
    revenue: Decimal
    items_sold: int


metadata = MetaData()


def utc_now() -> datetime:
    """Return the current UTC time as a naive ``datetime``.

    Timestamps are stored without zone information; every value written by
    this package is UTC.
    """

    return datetime.now(UTC).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Normalize ``value`` to the naive-UTC form used in storage."""

    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("username", String(50), nullable=False, unique=True),
    Column("password", String(255), nullable=False),
    Column("full_name", String(100), nullable=False),
    Column("email", String(100)),
    Column("role", String(20), nullable=False, default="USER"),
    Column("active", Boolean, nullable=False, default=True),
    Column("created_at", DateTime, default=utc_now),
    Column("last_login", DateTime),
)

products = Table(
    "products",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("name", String(100), nullable=False),
    Column("description", Text),
    Column("category", String(50)),
    Column("price", Numeric(10, 2), nullable=False),
    Column("quantity", Integer, nullable=False, default=0),
    Column("low_stock_threshold", Integer, nullable=False, default=DEFAULT_LOW_STOCK_THRESHOLD),
    Column("created_at", DateTime, default=utc_now),
    Column("updated_at", DateTime, default=utc_now, onupdate=utc_now),
    Index("idx_products_category", "category"),
    Index("idx_products_quantity", "quantity"),
)

sales = Table(
    "sales",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("product_id", Integer, ForeignKey("products.id"), nullable=False),
    Column("quantity_sold", Integer, nullable=False),
    Column("total_amount", Numeric(10, 2), nullable=False),
    Column("sale_date", DateTime, nullable=False, default=utc_now),
    Index("idx_sales_product_id", "product_id"),
    Index("idx_sales_date", "sale_date"),
)


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the
    current working directory toward the filesystem root looking for a file
    named ``CONFIG_FILE_NAME``; the first match wins.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If no ``CONFIG_FILE_NAME`` exists in the current
            directory or any of its parents.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Validation of required entries happens in :func:`parse_settings`.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def parse_settings(
    parser: configparser.ConfigParser,
    *,
    base_path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    The database URL comes from ``[Database] Url`` unless the
    ``INVENTORY_DB_URL`` environment variable is set, in which case the
    variable wins. SQLite URLs pointing at a relative file are anchored to
    ``base_path`` (or the current working directory) so the database location
    does not depend on where the process was started.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory used to resolve relative SQLite
            database paths. Defaults to :func:`Path.cwd`.
        environ (Mapping[str, str] | None): Environment to consult for
            overrides. Defaults to :data:`os.environ`.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If one of the required sections or options is missing.
        ValueError: If the database URL or a numeric/boolean option cannot be
            parsed.
    """

    if environ is None:
        environ = os.environ

    try:
        url_raw = parser.get("Database", "Url")
        store_name = parser.get("System", "StoreName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    echo = parser.getboolean("Database", "Echo", fallback=False)
    busy_timeout = parser.getfloat("Database", "BusyTimeout", fallback=DEFAULT_BUSY_TIMEOUT)

    override = environ.get(DATABASE_URL_ENV)
    if override:
        log.info("Using database URL from environment variable %s", DATABASE_URL_ENV)
        url_raw = override

    return ConfigSettings(
        database_url=resolve_database_url(url_raw, base_path=base_path),
        store_name=store_name,
        schema_version=schema_version,
        echo=echo,
        busy_timeout=busy_timeout,
    )


def resolve_database_url(url_raw: str, *, base_path: Optional[Path] = None) -> str:
    """Anchor relative SQLite file paths to ``base_path``.

    Non-SQLite URLs and in-memory SQLite URLs are returned unchanged.

    Raises:
        ValueError: If ``url_raw`` is not a valid SQLAlchemy URL.
    """

    try:
        url = make_url(url_raw)
    except ArgumentError as exc:
        raise ValueError(f"Invalid database URL: {url_raw!r}") from exc

    if url.get_backend_name() != "sqlite":
        return url_raw
    database = url.database
    if not database or database == ":memory:":
        return url_raw

    db_path = Path(database).expanduser()
    if not db_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        db_path = (base_path / db_path).resolve()
    return url.set(database=str(db_path)).render_as_string(hide_password=False)


def create_engine_from_settings(settings: ConfigSettings) -> Engine:
    """Build the SQLAlchemy engine that every store shares.

    SQLite connections are opened with ``check_same_thread`` disabled so the
    pool can hand them to worker threads, and with the configured busy
    timeout so a writer waits for a competing transaction to finish instead
    of failing straight away.
    """

    url = make_url(settings.database_url)
    connect_args: dict[str, Any] = {}
    if url.get_backend_name() == "sqlite":
        connect_args = {"check_same_thread": False, "timeout": settings.busy_timeout}

    engine = create_engine(url, echo=settings.echo, connect_args=connect_args)
    log.info("Created database engine for '%s'", url.render_as_string(hide_password=True))
    return engine


def create_schema(engine: Engine) -> None:
    """Create any missing tables and indexes."""

    try:
        metadata.create_all(engine)
    except SQLAlchemyError as exc:
        log.error("Schema creation failed: %s", exc)
        raise StorageError(f"Unable to create schema: {exc}") from exc
    log.info("Database schema is in place")


def drop_schema(engine: Engine) -> None:
    """Drop every table owned by this package."""

    try:
        metadata.drop_all(engine)
    except SQLAlchemyError as exc:
        log.error("Schema removal failed: %s", exc)
        raise StorageError(f"Unable to drop schema: {exc}") from exc
    log.info("Database schema dropped")


@contextmanager
def connection_scope(engine: Engine, connection: Optional[Connection] = None) -> Iterator[Connection]:
    """Yield a connection bound to exactly one transaction.

    When ``connection`` is supplied the caller already owns a transaction and
    the same connection is yielded untouched; commit, rollback and error
    translation stay with the owner. Otherwise a new transaction is started
    with :meth:`Engine.begin`: it commits when the block exits normally, rolls
    back when any exception escapes, and returns the connection to the pool
    on every path. Driver errors leave the scope as :class:`StorageError`
    with the original exception chained.

    Args:
        engine (Engine): Engine used to open a fresh transaction.
        connection (Connection | None): Connection of an enclosing
            transaction, if any.

    Yields:
        Connection: Connection to execute statements on.

    Raises:
        StorageError: If the database rejects a statement or the commit, or
            cannot be reached.
    """

    if connection is not None:
        yield connection
        return

    try:
        with engine.begin() as conn:
            yield conn
    except SQLAlchemyError as exc:
        log.error("Transaction rolled back after storage failure: %s", exc)
        raise StorageError(str(exc)) from exc


def to_decimal(raw: object) -> Decimal:
    """Coerce a numeric column value into a cent-quantized ``Decimal``."""

    if raw is None:
        return Decimal("0.00")
    return Decimal(str(raw)).quantize(CENT)


def deserialize_product(row: Any) -> ProductRow:
    """Convert a ``products`` result row into a :class:`ProductRow`.

    Accepts anything exposing a ``_mapping`` (SQLAlchemy ``Row``) or a plain
    mapping with the table's column names.
    """

    data = getattr(row, "_mapping", row)
    return ProductRow(
        product_id=int(data["id"]),
        name=str(data["name"]),
        description=data["description"],
        category=data["category"],
        price=to_decimal(data["price"]),
        quantity=int(data["quantity"]),
        low_stock_threshold=int(data["low_stock_threshold"]),
        created_at=data["created_at"],
        updated_at=data["updated_at"],
    )


def deserialize_sale(row: Any) -> SaleRow:
    """Convert a ``sales`` result row (joined with the product name) into a :class:`SaleRow`."""

    data = getattr(row, "_mapping", row)
    product_name = data.get("product_name")
    return SaleRow(
        sale_id=int(data["id"]),
        product_id=int(data["product_id"]),
        product_name=(str(product_name) if product_name is not None else None),
        quantity_sold=int(data["quantity_sold"]),
        total_amount=to_decimal(data["total_amount"]),
        sale_date=data["sale_date"],
    )
