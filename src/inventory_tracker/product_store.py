"""Persistence for product records.

Each method either joins the transaction of the ``connection`` passed in or
runs in a transaction of its own. Statements are built with SQLAlchemy Core so
every value reaches the database as a bound parameter.
"""

from __future__ import annotations

from typing import List, Optional

from sqlalchemy import delete, insert, select, update
from sqlalchemy.engine import Connection, Engine

from . import log
from .data_manager import ProductRow, StorageError, connection_scope, deserialize_product, products, utc_now


class ProductStore:
    """Read and write access to the ``products`` table."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def create(self, product: ProductRow, *, connection: Optional[Connection] = None) -> ProductRow:
        """Insert ``product`` and return the stored record with its assigned id.

        The ``product_id`` of the argument is ignored; the database assigns it.

        Raises:
            StorageError: On constraint violations or connectivity failures.
        """

        now = utc_now()
        stmt = insert(products).values(
            name=product.name,
            description=product.description,
            category=product.category,
            price=product.price,
            quantity=product.quantity,
            low_stock_threshold=product.low_stock_threshold,
            created_at=now,
            updated_at=now,
        )
        with connection_scope(self._engine, connection) as conn:
            result = conn.execute(stmt)
            new_id = result.inserted_primary_key[0]
            stored = self.get_by_id(new_id, connection=conn)
        if stored is None:
            raise StorageError(f"Product {new_id} vanished right after insert")
        log.debug("Inserted product %s ('%s')", stored.product_id, stored.name)
        return stored

    def get_by_id(self, product_id: int, *, connection: Optional[Connection] = None) -> Optional[ProductRow]:
        """Return the product with ``product_id`` or ``None`` when absent."""

        stmt = select(products).where(products.c.id == product_id)
        with connection_scope(self._engine, connection) as conn:
            row = conn.execute(stmt).first()
        return deserialize_product(row) if row is not None else None

    def get_all(self, *, connection: Optional[Connection] = None) -> List[ProductRow]:
        stmt = select(products).order_by(products.c.name, products.c.id)
        return self._fetch(stmt, connection)

    def get_by_category(self, category: str, *, connection: Optional[Connection] = None) -> List[ProductRow]:
        stmt = (
            select(products)
            .where(products.c.category == category)
            .order_by(products.c.name, products.c.id)
        )
        return self._fetch(stmt, connection)

    def search(self, name_substring: str, *, connection: Optional[Connection] = None) -> List[ProductRow]:
        """Case-insensitive substring match on the product name.

        LIKE wildcards inside ``name_substring`` are matched literally.
        """

        stmt = (
            select(products)
            .where(products.c.name.icontains(name_substring, autoescape=True))
            .order_by(products.c.name, products.c.id)
        )
        return self._fetch(stmt, connection)

    def get_low_stock(self, *, connection: Optional[Connection] = None) -> List[ProductRow]:
        """Products whose quantity is at or below their threshold, scarcest first."""

        stmt = (
            select(products)
            .where(products.c.quantity <= products.c.low_stock_threshold)
            .order_by(products.c.quantity, products.c.name)
        )
        return self._fetch(stmt, connection)

    def update(self, product: ProductRow, *, connection: Optional[Connection] = None) -> bool:
        """Replace every editable column of ``product`` by id.

        Returns:
            bool: ``True`` when a row was affected.
        """

        if product.product_id is None:
            raise ValueError("Cannot update a product without an id")
        stmt = (
            update(products)
            .where(products.c.id == product.product_id)
            .values(
                name=product.name,
                description=product.description,
                category=product.category,
                price=product.price,
                quantity=product.quantity,
                low_stock_threshold=product.low_stock_threshold,
            )
        )
        return self._execute_write(stmt, connection)

    def update_quantity(self, product_id: int, new_quantity: int, *, connection: Optional[Connection] = None) -> bool:
        """Overwrite the stock level of one product."""

        stmt = update(products).where(products.c.id == product_id).values(quantity=new_quantity)
        return self._execute_write(stmt, connection)

    def decrement_quantity(self, product_id: int, quantity: int, *, connection: Optional[Connection] = None) -> bool:
        """Deduct ``quantity`` units only if that many are still on hand.

        The sufficiency check and the write happen in the same ``UPDATE``
        statement, so two writers racing for the last units cannot both
        succeed no matter what either of them read earlier.

        Returns:
            bool: ``True`` when the stock was deducted, ``False`` when the
                product is missing or holds fewer than ``quantity`` units.
        """

        stmt = (
            update(products)
            .where(products.c.id == product_id)
            .where(products.c.quantity >= quantity)
            .values(quantity=products.c.quantity - quantity)
        )
        return self._execute_write(stmt, connection)

    def increment_quantity(self, product_id: int, quantity: int, *, connection: Optional[Connection] = None) -> bool:
        """Add ``quantity`` units back to a product's stock."""

        stmt = (
            update(products)
            .where(products.c.id == product_id)
            .values(quantity=products.c.quantity + quantity)
        )
        return self._execute_write(stmt, connection)

    def delete(self, product_id: int, *, connection: Optional[Connection] = None) -> bool:
        stmt = delete(products).where(products.c.id == product_id)
        return self._execute_write(stmt, connection)

    def _fetch(self, stmt, connection: Optional[Connection]) -> List[ProductRow]:
        with connection_scope(self._engine, connection) as conn:
            rows = conn.execute(stmt).fetchall()
        return [deserialize_product(row) for row in rows]

    def _execute_write(self, stmt, connection: Optional[Connection]) -> bool:
        with connection_scope(self._engine, connection) as conn:
            affected = conn.execute(stmt).rowcount
        return affected > 0
