"""Enumerations and fixed values shared across the inventory tracker layers.

Keeps the identifiers used by the data access layer, the business layer and
the report writers in one place.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum, IntEnum


# Schema version the code expects ``config.ini`` to declare.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# Money columns are stored with two decimal places.
CENT = Decimal("0.01")

DEFAULT_LOW_STOCK_THRESHOLD = 10

# Overrides ``[Database] Url`` from config.ini when set.
DATABASE_URL_ENV = "INVENTORY_DB_URL"

# Largest value a signed 64-bit INTEGER column can hold.
MAX_STORED_INTEGER = 2**63 - 1


class Month(IntEnum):
    """Calendar months keyed by their 1-based number."""

    JANUARY = 1
    FEBRUARY = 2
    MARCH = 3
    APRIL = 4
    MAY = 5
    JUNE = 6
    JULY = 7
    AUGUST = 8
    SEPTEMBER = 9
    OCTOBER = 10
    NOVEMBER = 11
    DECEMBER = 12

    @property
    def display_name(self) -> str:
        return self.name.capitalize()


class StockStatus(str, Enum):
    """Stock classification used by listings and alerts."""

    IN_STOCK = "In Stock"
    LOW_STOCK = "Low Stock"
    OUT_OF_STOCK = "Out of Stock"


class ReportSheet(str, Enum):
    """Worksheet names written by the workbook export."""

    INVENTORY = "Inventory"
    LOW_STOCK = "LowStock"
    REVENUE = "Revenue"


def month_name(month: int) -> str:
    """Return the English name for a 1-based month number.

    Raises:
        ValueError: If ``month`` is outside ``1..12``.
    """

    return Month(month).display_name


__all__ = [
    "CENT",
    "DATABASE_URL_ENV",
    "DEFAULT_LOW_STOCK_THRESHOLD",
    "EXPECTED_SCHEMA_VERSION",
    "Month",
    "ReportSheet",
    "StockStatus",
    "month_name",
]
