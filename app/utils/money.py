"""
Utilidad: Montos
Todo el dinero se maneja con Decimal y se expone también en centavos
"""
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation

Money = Decimal

CENT = Decimal("0.01")


def D(x) -> Money:
    """Convierte cualquier valor a Decimal (None y "" valen cero)"""
    if isinstance(x, Decimal):
        value = x
    else:
        try:
            value = Decimal(str(x if x not in (None, "") else "0"))
        except InvalidOperation:
            raise ValueError(f"monto inválido: {x!r}")
    # NaN e Infinity no son montos
    if not value.is_finite():
        raise ValueError(f"monto inválido: {x!r}")
    return value


def round_money(x) -> Money:
    # ROUND_HALF_UP de Decimal redondea alejándose de cero en los empates
    return D(x).quantize(CENT, rounding=ROUND_HALF_UP)


def to_cents(x) -> int:
    return int((round_money(x) * 100).to_integral_value(rounding=ROUND_HALF_UP))


def from_cents(cents) -> Money:
    return round_money(Decimal(int(cents or 0)) / 100)


def format_weight(x) -> str:
    """20.50 -> '20.5', 20.00 -> '20'"""
    text = f"{round_money(x):.2f}"
    return text.rstrip("0").rstrip(".")
