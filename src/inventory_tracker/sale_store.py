"""Persistence for sale records and the revenue aggregates computed over them."""

from __future__ import annotations

from datetime import date, datetime, time
from typing import List, Optional, Union

from sqlalchemy import delete, extract, func, insert, select
from sqlalchemy.engine import Connection, Engine

from . import log
from .data_manager import (
    MonthlyTotals,
    SaleRow,
    StorageError,
    connection_scope,
    deserialize_sale,
    products,
    sales,
    to_decimal,
    to_naive_utc,
    utc_now,
)


DateBound = Union[date, datetime]

# Sales are listed with their product name; the outer join keeps sales whose
# product has been deleted.
_SALE_COLUMNS = (
    sales.c.id,
    sales.c.product_id,
    products.c.name.label("product_name"),
    sales.c.quantity_sold,
    sales.c.total_amount,
    sales.c.sale_date,
)
_SALE_SOURCE = sales.outerjoin(products, sales.c.product_id == products.c.id)
_NEWEST_FIRST = (sales.c.sale_date.desc(), sales.c.id.desc())


def range_start(value: DateBound) -> datetime:
    if isinstance(value, datetime):
        return to_naive_utc(value)
    return datetime.combine(value, time.min)


def range_end(value: DateBound) -> datetime:
    # A bare date covers the whole day.
    if isinstance(value, datetime):
        return to_naive_utc(value)
    return datetime.combine(value, time.max)


class SaleStore:
    """Read and write access to the ``sales`` table."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def create(self, sale: SaleRow, *, connection: Optional[Connection] = None) -> SaleRow:
        """Insert ``sale`` and return the stored record.

        ``sale_date`` defaults to the current UTC time when the caller leaves
        it empty.

        Raises:
            StorageError: On constraint violations or connectivity failures.
        """

        sale_date = to_naive_utc(sale.sale_date) if sale.sale_date is not None else utc_now()
        stmt = insert(sales).values(
            product_id=sale.product_id,
            quantity_sold=sale.quantity_sold,
            total_amount=sale.total_amount,
            sale_date=sale_date,
        )
        with connection_scope(self._engine, connection) as conn:
            new_id = conn.execute(stmt).inserted_primary_key[0]
            stored = self.get_by_id(new_id, connection=conn)
        if stored is None:
            raise StorageError(f"Sale {new_id} vanished right after insert")
        log.debug("Inserted sale %s for product %s", stored.sale_id, stored.product_id)
        return stored

    def get_by_id(self, sale_id: int, *, connection: Optional[Connection] = None) -> Optional[SaleRow]:
        stmt = select(*_SALE_COLUMNS).select_from(_SALE_SOURCE).where(sales.c.id == sale_id)
        with connection_scope(self._engine, connection) as conn:
            row = conn.execute(stmt).first()
        return deserialize_sale(row) if row is not None else None

    def get_all(self, *, connection: Optional[Connection] = None) -> List[SaleRow]:
        stmt = select(*_SALE_COLUMNS).select_from(_SALE_SOURCE).order_by(*_NEWEST_FIRST)
        return self._fetch(stmt, connection)

    def get_by_product(self, product_id: int, *, connection: Optional[Connection] = None) -> List[SaleRow]:
        stmt = (
            select(*_SALE_COLUMNS)
            .select_from(_SALE_SOURCE)
            .where(sales.c.product_id == product_id)
            .order_by(*_NEWEST_FIRST)
        )
        return self._fetch(stmt, connection)

    def get_by_date_range(
        self,
        start: DateBound,
        end: DateBound,
        *,
        connection: Optional[Connection] = None,
    ) -> List[SaleRow]:
        """Sales dated between ``start`` and ``end``, both inclusive.

        ``date`` bounds are widened to the start of the first day and the end
        of the last day; ``datetime`` bounds are used as given.
        """

        stmt = (
            select(*_SALE_COLUMNS)
            .select_from(_SALE_SOURCE)
            .where(sales.c.sale_date.between(range_start(start), range_end(end)))
            .order_by(*_NEWEST_FIRST)
        )
        return self._fetch(stmt, connection)

    def count_by_product(self, product_id: int, *, connection: Optional[Connection] = None) -> int:
        stmt = select(func.count()).select_from(sales).where(sales.c.product_id == product_id)
        with connection_scope(self._engine, connection) as conn:
            return int(conn.execute(stmt).scalar_one())

    def delete(self, sale_id: int, *, connection: Optional[Connection] = None) -> bool:
        """Remove a sale row. Stock is not touched here."""

        stmt = delete(sales).where(sales.c.id == sale_id)
        with connection_scope(self._engine, connection) as conn:
            affected = conn.execute(stmt).rowcount
        return affected > 0

    def monthly_totals(self, year: int, month: int, *, connection: Optional[Connection] = None) -> MonthlyTotals:
        """Count, summed amount and summed quantity for one calendar month.

        The sums are computed by the database; a month without sales yields
        zeros.
        """

        stmt = (
            select(
                func.count(sales.c.id).label("transactions"),
                func.coalesce(func.sum(sales.c.total_amount), 0).label("revenue"),
                func.coalesce(func.sum(sales.c.quantity_sold), 0).label("items_sold"),
            )
            .where(extract("year", sales.c.sale_date) == year)
            .where(extract("month", sales.c.sale_date) == month)
        )
        with connection_scope(self._engine, connection) as conn:
            row = conn.execute(stmt).one()
        return MonthlyTotals(
            month=month,
            transactions=int(row.transactions),
            revenue=to_decimal(row.revenue),
            items_sold=int(row.items_sold),
        )

    def monthly_breakdown(self, year: int, *, connection: Optional[Connection] = None) -> List[MonthlyTotals]:
        """Per-month totals for ``year``, only months with sales, ascending."""

        month_expr = extract("month", sales.c.sale_date)
        stmt = (
            select(
                month_expr.label("month"),
                func.count(sales.c.id).label("transactions"),
                func.coalesce(func.sum(sales.c.total_amount), 0).label("revenue"),
                func.coalesce(func.sum(sales.c.quantity_sold), 0).label("items_sold"),
            )
            .where(extract("year", sales.c.sale_date) == year)
            .group_by(month_expr)
            .order_by(month_expr)
        )
        with connection_scope(self._engine, connection) as conn:
            rows = conn.execute(stmt).fetchall()
        return [
            MonthlyTotals(
                month=int(row.month),
                transactions=int(row.transactions),
                revenue=to_decimal(row.revenue),
                items_sold=int(row.items_sold),
            )
            for row in rows
        ]

    def _fetch(self, stmt, connection: Optional[Connection]) -> List[SaleRow]:
        with connection_scope(self._engine, connection) as conn:
            rows = conn.execute(stmt).fetchall()
        return [deserialize_sale(row) for row in rows]
