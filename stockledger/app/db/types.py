"""
Types de colonnes partagés.

Les quantités et montants sont des Decimal de bout en bout : jamais de float.
SQLite (dev / tests) n'a pas de NUMERIC exact, on y stocke donc la forme
texte du Decimal ; Postgres garde un NUMERIC natif.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from sqlalchemy import BigInteger, Integer, Numeric, String
from sqlalchemy.types import TypeDecorator

# SQLite n'auto-incrémente que "INTEGER PRIMARY KEY"
BigIntPK = BigInteger().with_variant(Integer, "sqlite")

QUANTITY_SCALE = 4
MONEY_SCALE = 2


def to_decimal(value) -> Decimal:
    """
    Convertit une entrée (str, int, Decimal) en Decimal.

    Les float sont refusés : passer par str() si besoin, c'est au caller de
    décider de l'arrondi.
    """
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool) or isinstance(value, float):
        raise TypeError(f"refusing lossy numeric input {value!r}")
    elif isinstance(value, (int, str)):
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation as exc:
            raise ValueError(f"not a decimal number: {value!r}") from exc
    else:
        raise TypeError(f"unsupported numeric input {value!r}")

    if not result.is_finite():
        raise ValueError(f"not a finite decimal number: {value!r}")
    return result


def quantize(value: Decimal, scale: int) -> Decimal:
    return value.quantize(Decimal(1).scaleb(-scale), rounding=ROUND_HALF_UP)


class DecimalType(TypeDecorator):
    impl = Numeric
    cache_ok = True

    def __init__(self, precision: int = 14, scale: int = QUANTITY_SCALE):
        super().__init__(precision=precision, scale=scale, asdecimal=True)
        self.precision = precision
        self.scale = scale

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(self.precision + 2))
        return dialect.type_descriptor(Numeric(self.precision, self.scale, asdecimal=True))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        value = quantize(to_decimal(value), self.scale)
        if dialect.name == "sqlite":
            return str(value)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(str(value))


def Quantity() -> DecimalType:
    return DecimalType(14, QUANTITY_SCALE)


def Money() -> DecimalType:
    return DecimalType(15, MONEY_SCALE)
