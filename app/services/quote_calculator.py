"""
Servicio: Calculadora de cotizaciones
Convierte peso de lavado y prendas de cama en líneas con precio, total y
si el cliente debe aprobar la cotización.

Función pura: misma entrada, misma salida (incluido el orden de las líneas).
"""
import json
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from ..utils.money import D, round_money, to_cents, format_weight
from .errors import ValidationError

PERSONAL = "Personal"
REQUEST = "Request"
PRICING_TYPES = (PERSONAL, REQUEST)

PERSONAL_WASH_RATE = Decimal("2.00")
REQUEST_WASH_RATE = Decimal("2.25")
WASH_MINIMUM_LBS = Decimal("20")
LARGE_BEDDING_MINIMUM = Decimal("50.00")
APPROVAL_TOLERANCE = Decimal("1.20")

WEIGHTED_BLANKET = "weighted_blanket"
WEIGHTED_BLANKET_RATE = Decimal("2.85")

# codigo -> (descripción, precio unitario, cuenta para el mínimo de ropa de cama grande)
CATALOG = {
    "comforter_king": ("Comforter (King)", Decimal("34.99"), True),
    "comforter_queen": ("Comforter (Queen)", Decimal("34.99"), True),
    "comforter_full": ("Comforter (Full)", Decimal("32.99"), True),
    "comforter_twin": ("Comforter (Twin)", Decimal("32.99"), True),
    "duvet_cover": ("Duvet Cover", Decimal("19.99"), True),
    "blanket": ("Blanket", Decimal("17.99"), True),
    "bedspread": ("Bedspread", Decimal("15.99"), False),
    "cushion_slip_cover": ("Cushion Slip Cover", Decimal("8.99"), False),
    "chair_slip_cover": ("Chair Slip Cover", Decimal("17.99"), False),
    "sofa_slip_cover": ("Sofa Slip Cover", Decimal("22.99"), False),
    "pillow_sham": ("Pillow Sham", Decimal("3.99"), False),
    "standard_pillow": ("Standard Pillow", Decimal("9.99"), False),
    "mattress_cover": ("Mattress Cover", Decimal("11.99"), False),
}

MINIMUM_ADJUSTMENT = "Minimum pricing adjustment"

# Topes de entrada: el total en centavos debe caber en la columna Integer
MAX_WEIGHT_LBS = Decimal("10000")
MAX_ITEM_QUANTITY = 1000
MAX_ITEMS = 100
MAX_ESTIMATE = Decimal("1000000")


@dataclass(frozen=True)
class QuoteItem:
    code: str
    quantity: int = 0
    weight_lbs: Optional[Decimal] = None


@dataclass(frozen=True)
class QuoteInput:
    pricing_type: str = PERSONAL
    wash_weight_lbs: Optional[Decimal] = None
    weighted_blanket_weight_lbs: Optional[Decimal] = None
    items: tuple = ()
    estimated_total: Optional[Decimal] = None
    estimated_amount_cents: Optional[int] = None

    @classmethod
    def from_payload(cls, data):
        """
        Construye la entrada desde un JSON de la API.

        Acepta `pricing_type`, `wash_weight_lbs` (o `bag_weight_lbs`),
        `weighted_blanket_weight_lbs`, `items` [{code, quantity, weight_lbs}],
        `estimated_total` o `estimated_amount_cents`.
        """
        if not isinstance(data, dict):
            raise ValidationError("La cotización debe ser un objeto JSON")

        pricing_type = (data.get("pricing_type") or PERSONAL).strip()
        matched = [p for p in PRICING_TYPES if p.lower() == pricing_type.lower()]
        if not matched:
            raise ValidationError(
                f"pricing_type debe ser uno de: {', '.join(PRICING_TYPES)}",
                pricing_type=pricing_type,
            )

        raw_items = data.get("items") or []
        if not isinstance(raw_items, list):
            raise ValidationError("items debe ser una lista")
        if len(raw_items) > MAX_ITEMS:
            raise ValidationError(f"items admite como máximo {MAX_ITEMS} líneas")

        items = []
        for raw in raw_items:
            if not isinstance(raw, dict):
                raise ValidationError("Cada item debe ser un objeto con code y quantity")
            code = (raw.get("code") or raw.get("item_code") or "").strip()
            items.append(QuoteItem(
                code=code,
                quantity=_parse_int(raw.get("quantity"), "quantity", MAX_ITEM_QUANTITY),
                weight_lbs=_parse_decimal(raw.get("weight_lbs"), "weight_lbs", MAX_WEIGHT_LBS),
            ))

        wash = data.get("wash_weight_lbs", data.get("bag_weight_lbs"))
        cents = data.get("estimated_amount_cents")
        if cents is not None:
            cents = _parse_int(cents, "estimated_amount_cents", to_cents(MAX_ESTIMATE))

        return cls(
            pricing_type=matched[0],
            wash_weight_lbs=_parse_decimal(wash, "wash_weight_lbs", MAX_WEIGHT_LBS),
            weighted_blanket_weight_lbs=_parse_decimal(
                data.get("weighted_blanket_weight_lbs"), "weighted_blanket_weight_lbs", MAX_WEIGHT_LBS
            ),
            items=tuple(items),
            estimated_total=_parse_decimal(data.get("estimated_total"), "estimated_total", MAX_ESTIMATE),
            estimated_amount_cents=cents,
        )

    def items_to_list(self):
        return [
            {
                "code": item.code,
                "quantity": item.quantity,
                "weight_lbs": float(item.weight_lbs) if item.weight_lbs is not None else None,
            }
            for item in self.items
        ]


@dataclass(frozen=True)
class QuoteResult:
    total: Decimal
    total_cents: int
    applied_minimum: Decimal
    applied_minimum_cents: int
    requires_approval: bool
    has_large_bedding_or_weighted: bool
    line_items: List[dict] = field(default_factory=list)

    def line_items_json(self):
        return json.dumps(self.line_items)

    def to_dict(self):
        return {
            "total": float(self.total),
            "total_cents": self.total_cents,
            "applied_minimum": float(self.applied_minimum),
            "applied_minimum_cents": self.applied_minimum_cents,
            "requires_approval": self.requires_approval,
            "has_large_bedding_or_weighted": self.has_large_bedding_or_weighted,
            "line_items": self.line_items,
        }


def _parse_decimal(value, name, maximum=None):
    if value is None or value == "":
        return None
    try:
        parsed = D(value)
    except ValueError:
        raise ValidationError(f"{name} debe ser numérico", field=name)
    if maximum is not None and parsed > maximum:
        raise ValidationError(f"{name} no puede superar {maximum}", field=name)
    return parsed


def _parse_int(value, name, maximum=None):
    if value is None or value == "":
        return 0
    try:
        parsed = int(value)
    except (TypeError, ValueError, OverflowError):
        raise ValidationError(f"{name} debe ser un entero", field=name)
    if maximum is not None and parsed > maximum:
        raise ValidationError(f"{name} no puede superar {maximum}", field=name)
    return parsed


def wash_rate_for(pricing_type):
    if (pricing_type or "").lower() == REQUEST.lower():
        return REQUEST_WASH_RATE
    return PERSONAL_WASH_RATE


def _line(description, amount):
    return {"description": description, "amount": float(round_money(amount))}


def calculate(quote_input: QuoteInput) -> QuoteResult:
    """Calcula la cotización. No tiene efectos secundarios."""
    line_items = []
    subtotal = Decimal("0")

    wash_rate = wash_rate_for(quote_input.pricing_type)

    wash_weight = max(D(quote_input.wash_weight_lbs), Decimal("0"))
    if wash_weight > 0:
        billable = max(wash_weight, WASH_MINIMUM_LBS)
        wash_amount = billable * wash_rate
        subtotal += wash_amount
        line_items.append(_line(
            f"Wash & Fold ({format_weight(billable)} lbs @ ${wash_rate:.2f}/lb)", wash_amount
        ))
        if wash_weight < WASH_MINIMUM_LBS:
            line_items.append(_line("20 lb minimum applied", 0))

    has_large = False

    for item in quote_input.items:
        code = (item.code or "").strip().lower()
        if not code or code == WEIGHTED_BLANKET:
            continue
        entry = CATALOG.get(code)
        if entry is None:
            continue
        quantity = max(int(item.quantity or 0), 0)
        if quantity <= 0:
            continue

        description, unit_price, counts_large = entry
        amount = quantity * unit_price
        subtotal += amount
        line_items.append(_line(f"{description} x{quantity}", amount))
        if counts_large:
            has_large = True

    # Las frazadas con peso se cobran por libra, no por unidad
    blanket_weight = max(D(quote_input.weighted_blanket_weight_lbs), Decimal("0"))
    for item in quote_input.items:
        if (item.code or "").strip().lower() == WEIGHTED_BLANKET:
            blanket_weight += max(D(item.weight_lbs), Decimal("0"))

    if blanket_weight > 0:
        blanket_amount = blanket_weight * WEIGHTED_BLANKET_RATE
        subtotal += blanket_amount
        has_large = True
        line_items.append(_line(
            f"Weighted Blanket ({format_weight(blanket_weight)} lbs @ ${WEIGHTED_BLANKET_RATE:.2f}/lb)",
            blanket_amount,
        ))

    wash_minimum = WASH_MINIMUM_LBS * wash_rate if wash_weight > 0 else Decimal("0")
    large_minimum = LARGE_BEDDING_MINIMUM if has_large else Decimal("0")
    applied_minimum = max(wash_minimum, large_minimum)

    if applied_minimum > 0 and subtotal < applied_minimum:
        line_items.append(_line(MINIMUM_ADJUSTMENT, applied_minimum - subtotal))
        subtotal = applied_minimum

    estimated = resolve_estimated_total(quote_input)
    requires_approval = subtotal > applied_minimum or (
        estimated > 0 and subtotal > estimated * APPROVAL_TOLERANCE
    )

    return QuoteResult(
        total=round_money(subtotal),
        total_cents=to_cents(subtotal),
        applied_minimum=round_money(applied_minimum),
        applied_minimum_cents=to_cents(applied_minimum),
        requires_approval=requires_approval,
        has_large_bedding_or_weighted=has_large,
        line_items=line_items,
    )


def resolve_estimated_total(quote_input: QuoteInput) -> Decimal:
    if quote_input.estimated_total is not None and D(quote_input.estimated_total) > 0:
        return D(quote_input.estimated_total)
    if quote_input.estimated_amount_cents and quote_input.estimated_amount_cents > 0:
        return Decimal(quote_input.estimated_amount_cents) / 100
    return Decimal("0")
