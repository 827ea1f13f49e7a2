"""Utility for initializing the inventory tracker database.

The module doubles as a script (``python -m inventory_tracker.setup_db``) and
as a library used by the CLI and the tests. It creates the schema and can seed
the sample catalogue and sales used for demonstrations.
"""

from __future__ import annotations

import argparse
import sys
from datetime import timedelta
from decimal import Decimal
from pathlib import Path
from typing import Mapping, Sequence

from sqlalchemy import func, insert, select, update
from sqlalchemy.engine import Engine

from . import data_manager, log
from .constants import EXPECTED_SCHEMA_VERSION

CONFIG_FILE = data_manager.CONFIG_FILE_NAME

CONFIG_TEMPLATE = (
    "[Database]\n"
    "Url = {database_url}\n"
    "Echo = false\n"
    "BusyTimeout = {busy_timeout}\n\n"
    "[System]\n"
    "StoreName = {store_name}\n"
    "SchemaVersion = {schema_version}\n"
)

SAMPLE_PRODUCTS: Sequence[Mapping[str, object]] = (
    {"name": "Laptop", "description": "High-performance laptop", "category": "Electronics",
     "price": Decimal("999.99"), "quantity": 50, "low_stock_threshold": 10},
    {"name": "Mouse", "description": "Wireless mouse", "category": "Electronics",
     "price": Decimal("29.99"), "quantity": 100, "low_stock_threshold": 20},
    {"name": "Keyboard", "description": "Mechanical keyboard", "category": "Electronics",
     "price": Decimal("79.99"), "quantity": 75, "low_stock_threshold": 15},
    {"name": "Monitor", "description": "27-inch 4K monitor", "category": "Electronics",
     "price": Decimal("399.99"), "quantity": 30, "low_stock_threshold": 5},
    {"name": "Headphones", "description": "Noise-cancelling headphones", "category": "Electronics",
     "price": Decimal("199.99"), "quantity": 60, "low_stock_threshold": 10},
    {"name": "USB Cable", "description": "USB-C cable 2m", "category": "Accessories",
     "price": Decimal("12.99"), "quantity": 200, "low_stock_threshold": 50},
    {"name": "Webcam", "description": "HD webcam", "category": "Electronics",
     "price": Decimal("89.99"), "quantity": 40, "low_stock_threshold": 8},
    {"name": "Desk", "description": "Standing desk", "category": "Furniture",
     "price": Decimal("449.99"), "quantity": 15, "low_stock_threshold": 3},
    {"name": "Chair", "description": "Ergonomic office chair", "category": "Furniture",
     "price": Decimal("299.99"), "quantity": 20, "low_stock_threshold": 5},
    {"name": "Notebook", "description": "A5 notebook", "category": "Stationery",
     "price": Decimal("5.99"), "quantity": 500, "low_stock_threshold": 100},
)

# (product position in SAMPLE_PRODUCTS, quantity sold, days ago)
SAMPLE_SALES: Sequence[tuple[int, int, int]] = (
    (0, 2, 5),
    (1, 5, 4),
    (2, 3, 3),
    (0, 1, 2),
    (3, 2, 1),
    (4, 4, 0),
)


def write_default_config(
    destination: Path,
    *,
    database_url: str = "sqlite:///inventory.db",
    store_name: str = "Main Store",
    busy_timeout: float = data_manager.DEFAULT_BUSY_TIMEOUT,
    overwrite: bool = False,
) -> Path:
    """Write a ``config.ini`` pointing at ``database_url``.

    Raises:
        FileExistsError: If ``destination`` exists and ``overwrite`` is false.
    """

    destination = destination.expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(f"Refusing to overwrite existing configuration: {destination}")
    destination.parent.mkdir(parents=True, exist_ok=True)
    destination.write_text(
        CONFIG_TEMPLATE.format(
            database_url=database_url,
            busy_timeout=busy_timeout,
            store_name=store_name,
            schema_version=EXPECTED_SCHEMA_VERSION,
        ),
        encoding="utf-8",
    )
    return destination


def initialize_database(engine: Engine, *, force: bool = False, sample_data: bool = False) -> None:
    """Create the schema, optionally dropping existing tables first.

    Sample rows are only inserted into an empty ``products`` table so running
    the setup twice does not duplicate the catalogue.
    """

    if force:
        data_manager.drop_schema(engine)
    data_manager.create_schema(engine)
    if sample_data:
        seed_sample_data(engine)


def seed_sample_data(engine: Engine) -> int:
    """Insert the demonstration catalogue and a few recent sales.

    Each sample sale is deducted from its product, so a product's stock plus
    its sold units equals the quantity in ``SAMPLE_PRODUCTS``.

    Returns:
        int: Number of products inserted (zero when the table had rows).
    """

    now = data_manager.utc_now()
    with data_manager.connection_scope(engine) as conn:
        existing = conn.execute(select(func.count()).select_from(data_manager.products)).scalar_one()
        if existing:
            log.info("Products table already holds %d row(s); skipping sample data", existing)
            return 0

        product_ids = []
        for template in SAMPLE_PRODUCTS:
            result = conn.execute(
                insert(data_manager.products).values(**template, created_at=now, updated_at=now)
            )
            product_ids.append(result.inserted_primary_key[0])

        for position, quantity, days_ago in SAMPLE_SALES:
            price = SAMPLE_PRODUCTS[position]["price"]
            conn.execute(
                insert(data_manager.sales).values(
                    product_id=product_ids[position],
                    quantity_sold=quantity,
                    total_amount=price * quantity,
                    sale_date=now - timedelta(days=days_ago),
                )
            )
            # Seeded sales take their units out of stock like real ones.
            conn.execute(
                update(data_manager.products)
                .where(data_manager.products.c.id == product_ids[position])
                .values(quantity=data_manager.products.c.quantity - quantity)
            )
    log.info("Seeded %d sample products and %d sample sales", len(SAMPLE_PRODUCTS), len(SAMPLE_SALES))
    return len(SAMPLE_PRODUCTS)


def run_from_config(config_path: Path, *, force: bool = False, sample_data: bool = False) -> str:
    """Initialize the database named in ``config_path``.

    Returns:
        str: The database URL that was initialized.
    """

    config_path = config_path.expanduser().resolve()
    parser = data_manager.read_config(config_path)
    settings = data_manager.parse_settings(parser, base_path=config_path.parent)
    engine = data_manager.create_engine_from_settings(settings)
    try:
        initialize_database(engine, force=force, sample_data=sample_data)
    finally:
        engine.dispose()
    return settings.database_url


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the setup script."""

    parser = argparse.ArgumentParser(description="Initialize the inventory tracker database")
    parser.add_argument(
        "--config",
        default=CONFIG_FILE,
        help="Path to configuration file (default: config.ini)",
    )
    parser.add_argument(
        "--write-config",
        action="store_true",
        help="Create a default config.ini at --config when it does not exist.",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Drop existing tables before creating the schema.",
    )
    parser.add_argument(
        "--sample-data",
        action="store_true",
        help="Seed demonstration products and sales into an empty database.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the setup script."""

    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()

    print("--- Inventory Tracker Setup ---")
    print(f"Using configuration: {config_path}")

    try:
        if args.write_config and not config_path.exists():
            write_default_config(config_path)
            print(f"Wrote default configuration to '{config_path}'.")
        database_url = run_from_config(config_path, force=args.force, sample_data=args.sample_data)
    except (FileNotFoundError, KeyError, ValueError) as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except data_manager.StorageError as exc:
        print(f"\n[ERROR] Unable to initialize database: {exc}")
        return 1

    print(f"\n[SUCCESS] Database ready at '{database_url}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())
