from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union

PESO_SIGN = "₱"


def parse_amount(value: Union[str, int, float, Decimal]) -> int:
    """Convert a user-entered peso amount into integer cents."""
    if isinstance(value, (int, float, Decimal)):
        clean = str(value)
    else:
        clean = (
            value.strip()
            .replace(PESO_SIGN, "")
            .replace("PHP", "")
            .replace(",", "")
            .replace(" ", "")
        )
    try:
        amount = Decimal(clean)
    except InvalidOperation as exc:
        raise ValueError("Invalid amount") from exc
    if not amount.is_finite():
        raise ValueError("Invalid amount")
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def cents_to_pesos(cents: int) -> Decimal:
    return (Decimal(cents) / Decimal(100)).quantize(Decimal("0.01"))


def format_peso(cents: int) -> str:
    sign = "-" if cents < 0 else ""
    return f"{sign}{PESO_SIGN}{abs(cents) / 100:,.2f}"


def format_number(cents: int) -> str:
    pesos = cents_to_pesos(cents)
    if pesos == pesos.to_integral_value():
        return f"{int(pesos):,}"
    return f"{pesos:,.2f}"
