"""Column types shared by the ledger models."""

from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import Text
from sqlalchemy.types import TypeDecorator


class ExactDecimal(TypeDecorator):
    """
    Decimal stored as its plain-notation text.

    Numeric columns round to a fixed scale, and SQLite keeps them as floats.
    Text keeps every digit of the value, so a stored amount reads back equal
    to the Decimal that was written.
    """

    impl = Text
    cache_ok = True

    def process_bind_param(self, value: Any, dialect: Any) -> Optional[str]:
        if value is None:
            return None
        if not isinstance(value, Decimal):
            value = Decimal(str(value))
        if not value.is_finite():
            raise ValueError(f"Cannot store non-finite amount {value}")
        return format(value, "f")

    def process_result_value(self, value: Any, dialect: Any) -> Optional[Decimal]:
        if value is None:
            return None
        return Decimal(value)
