from __future__ import annotations

from decimal import Decimal

from stockledger.app.core.exceptions import InputValidationError
from stockledger.app.db.types import MONEY_SCALE, QUANTITY_SCALE, quantize, to_decimal


def parse_decimal(
    value,
    field: str,
    *,
    scale: int = QUANTITY_SCALE,
    positive: bool = False,
    allow_negative: bool = False,
) -> Decimal:
    """
    Entrée utilisateur -> Decimal arrondi à l'échelle de la colonne cible
    (la valeur en mémoire est ainsi celle qui sera relue en base).
    """
    try:
        result = quantize(to_decimal(value), scale)
    except (TypeError, ValueError) as exc:
        raise InputValidationError(f"{field} must be a decimal number", field=field, value=value) from exc

    if positive and result <= 0:
        raise InputValidationError(f"{field} must be greater than zero", field=field, value=value)
    if not allow_negative and result < 0:
        raise InputValidationError(f"{field} must not be negative", field=field, value=value)
    return result


def parse_money(value, field: str) -> Decimal:
    return parse_decimal(value, field, scale=MONEY_SCALE)


def parse_paging(offset: int, limit: int, *, max_limit: int = 500) -> tuple[int, int]:
    if offset < 0:
        raise InputValidationError("offset must not be negative", field="offset", value=offset)
    if limit <= 0 or limit > max_limit:
        raise InputValidationError(f"limit must be between 1 and {max_limit}", field="limit", value=limit)
    return offset, limit
