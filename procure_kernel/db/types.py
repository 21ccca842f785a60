"""
Module: procure_kernel.db.types
Responsibility: Column types and helpers shared by every model.  Owns the
    money column type and currency validation.
Architecture position: Kernel > DB.  May be imported by models/ and
    services/.  MUST NOT import from either.

Invariants enforced:
    - No floats for money.  PostgreSQL stores Numeric(38, 9).  SQLite, whose
      numeric storage is binary floating point, stores the exact decimal
      string.  Both hand back ``Decimal``.
    - Stored money has exactly MONEY_DECIMAL_PLACES fractional digits.
      Values needing more are rejected, never rounded.
    - Currency codes are three uppercase ASCII letters (ISO 4217 shape).
"""

import re
from decimal import Context, Decimal, InvalidOperation

from sqlalchemy import Numeric, String
from sqlalchemy.types import TypeDecorator

from procure_kernel.domain.requisition import MONEY_DECIMAL_PLACES, MONEY_QUANTUM
from procure_kernel.exceptions import InvalidCurrencyError

_CURRENCY_PATTERN = re.compile(r"^[A-Z]{3}$")

_MONEY_CONTEXT = Context(prec=38)


class MoneyDecimal(TypeDecorator):
    """
    Exact Decimal money column.

    Guarantees:
        - process_bind_param: Decimal -> fixed-point value at scale 9.
          Raises ValueError for floats, non-finite values and values that
          would lose digits.
        - process_result_value: stored value -> Decimal.
    """

    impl = Numeric(38, MONEY_DECIMAL_PLACES)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(48))
        return dialect.type_descriptor(Numeric(38, MONEY_DECIMAL_PLACES, asdecimal=True))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, int) and not isinstance(value, bool):
            value = Decimal(value)
        if not isinstance(value, Decimal) or not value.is_finite():
            raise ValueError(f"Money column requires a finite Decimal, got {value!r}")
        try:
            scaled = value.quantize(MONEY_QUANTUM, context=_MONEY_CONTEXT)
        except InvalidOperation as exc:
            raise ValueError(f"Money value out of range: {value}") from exc
        if scaled != value:
            raise ValueError(
                f"Money value {value} has more than {MONEY_DECIMAL_PLACES} decimal places"
            )
        if dialect.name == "sqlite":
            return format(scaled, "f")
        return scaled

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(value) if not isinstance(value, Decimal) else value


def validate_currency(currency: str) -> str:
    """
    Normalize and validate a currency code.

    Returns:
        The upper-cased, trimmed code.

    Raises:
        InvalidCurrencyError: not a three-letter code.
    """
    if not currency or not isinstance(currency, str):
        raise InvalidCurrencyError(currency)
    normalized = currency.upper().strip()
    if not _CURRENCY_PATTERN.match(normalized):
        raise InvalidCurrencyError(currency)
    return normalized
