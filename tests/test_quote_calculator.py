from decimal import Decimal

import pytest

from app.services.errors import ValidationError
from app.services.quote_calculator import (
    CATALOG,
    LARGE_BEDDING_MINIMUM,
    MINIMUM_ADJUSTMENT,
    WASH_MINIMUM_LBS,
    QuoteInput,
    QuoteItem,
    calculate,
    resolve_estimated_total,
    wash_rate_for,
)
from app.utils.money import D, round_money

LARGE_BEDDING_CODES = sorted(code for code, (_, _, large) in CATALOG.items() if large)


def test_light_bag_is_billed_at_twenty_pound_minimum():
    result = calculate(QuoteInput(pricing_type="Personal", wash_weight_lbs=Decimal("10")))

    assert result.total == Decimal("40.00")
    assert result.total_cents == 4000
    assert result.applied_minimum == Decimal("40.00")
    assert result.requires_approval is False
    assert result.line_items == [
        {"description": "Wash & Fold (20 lbs @ $2.00/lb)", "amount": 40.0},
        {"description": "20 lb minimum applied", "amount": 0.0},
    ]


def test_single_blanket_is_raised_to_large_bedding_minimum():
    result = calculate(QuoteInput(items=(QuoteItem("blanket", 1),)))

    assert result.total == Decimal("50.00")
    assert result.has_large_bedding_or_weighted is True
    assert result.requires_approval is False
    assert result.line_items[-1] == {"description": MINIMUM_ADJUSTMENT, "amount": 32.01}


def test_weighted_blanket_above_minimum_needs_approval():
    result = calculate(QuoteInput(weighted_blanket_weight_lbs=Decimal("25")))

    assert result.total == Decimal("71.25")
    assert result.applied_minimum == Decimal("50.00")
    assert result.requires_approval is True
    assert result.line_items == [
        {"description": "Weighted Blanket (25 lbs @ $2.85/lb)", "amount": 71.25},
    ]


def test_quote_far_above_customer_estimate_needs_approval():
    result = calculate(QuoteInput(wash_weight_lbs=Decimal("20"), estimated_total=Decimal("30")))

    assert result.total == Decimal("40.00")
    assert result.requires_approval is True


def test_quote_within_estimate_tolerance_does_not_need_approval():
    result = calculate(QuoteInput(wash_weight_lbs=Decimal("20"), estimated_amount_cents=3500))

    # 40.00 <= 35.00 * 1.20
    assert result.requires_approval is False


def test_request_pricing_uses_higher_rate():
    result = calculate(QuoteInput(pricing_type="Request", wash_weight_lbs=Decimal("10")))

    assert result.total == Decimal("45.00")
    assert result.line_items[0]["description"] == "Wash & Fold (20 lbs @ $2.25/lb)"


def test_heavy_bag_above_minimum_needs_approval():
    result = calculate(QuoteInput(wash_weight_lbs=Decimal("25.5")))

    assert result.total == Decimal("51.00")
    assert result.requires_approval is True
    assert result.line_items == [
        {"description": "Wash & Fold (25.5 lbs @ $2.00/lb)", "amount": 51.0},
    ]


def test_unknown_and_empty_items_are_ignored():
    result = calculate(QuoteInput(items=(
        QuoteItem("spaceship", 3),
        QuoteItem("pillow_sham", 0),
        QuoteItem("", 2),
    )))

    assert result.total == Decimal("0.00")
    assert result.line_items == []
    assert result.requires_approval is False


def test_small_item_order_has_no_minimum_and_needs_approval():
    result = calculate(QuoteInput(items=(QuoteItem("pillow_sham", 2),)))

    assert result.total == Decimal("7.98")
    assert result.applied_minimum == Decimal("0.00")
    assert result.requires_approval is True


def test_weighted_blanket_items_add_their_weight():
    result = calculate(QuoteInput(items=(
        QuoteItem("weighted_blanket", weight_lbs=Decimal("10")),
        QuoteItem("weighted_blanket", weight_lbs=Decimal("5")),
    )))

    # 15 lb * 2.85 = 42.75 -> mínimo de 50.00
    assert result.total == Decimal("50.00")
    assert result.line_items[0]["description"] == "Weighted Blanket (15 lbs @ $2.85/lb)"


def test_calculation_is_deterministic():
    quote_input = QuoteInput(
        wash_weight_lbs=Decimal("22"),
        items=(QuoteItem("duvet_cover", 1), QuoteItem("comforter_king", 2)),
    )

    assert calculate(quote_input) == calculate(quote_input)


def test_from_payload_parses_api_body():
    quote_input = QuoteInput.from_payload({
        "pricing_type": "request",
        "bag_weight_lbs": "12.5",
        "items": [{"code": "blanket", "quantity": "2"}],
        "estimated_total": 60,
    })

    assert quote_input.pricing_type == "Request"
    assert quote_input.wash_weight_lbs == Decimal("12.5")
    assert quote_input.items == (QuoteItem("blanket", 2, None),)
    assert resolve_estimated_total(quote_input) == Decimal("60")


@pytest.mark.parametrize("payload", [
    {"pricing_type": "Business"},
    {"wash_weight_lbs": "heavy"},
    {"items": "blanket"},
    {"items": [{"code": "blanket", "quantity": "two"}]},
    {"wash_weight_lbs": "NaN"},
    {"wash_weight_lbs": "Infinity"},
    {"wash_weight_lbs": "sNaN"},
    {"wash_weight_lbs": float("nan")},
    {"weighted_blanket_weight_lbs": "-Infinity"},
    {"items": [{"code": "weighted_blanket", "weight_lbs": "NaN"}]},
    {"estimated_total": "Infinity"},
    {"wash_weight_lbs": "10000.01"},
    {"items": [{"code": "blanket", "quantity": 1001}]},
    {"items": [{"code": "blanket", "quantity": 1}] * 101},
])
def test_from_payload_rejects_malformed_input(payload):
    with pytest.raises(ValidationError):
        QuoteInput.from_payload(payload)


@pytest.mark.parametrize("pricing_type", ["Personal", "Request"])
@pytest.mark.parametrize("weight", ["0.1", "1", "5", "10", "19.99", "20", "20.01", "25.5", "37.33", "100", "999.99"])
def test_wash_total_covers_billable_weight_at_rate(pricing_type, weight):
    w = Decimal(weight)
    expected = round_money(max(w, WASH_MINIMUM_LBS) * wash_rate_for(pricing_type))

    alone = calculate(QuoteInput(pricing_type=pricing_type, wash_weight_lbs=w))
    with_items = calculate(QuoteInput(
        pricing_type=pricing_type, wash_weight_lbs=w, items=(QuoteItem("pillow_sham", 3),),
    ))

    assert alone.total >= expected
    assert with_items.total >= expected
    if w >= WASH_MINIMUM_LBS:
        assert alone.total == expected


@pytest.mark.parametrize("code", LARGE_BEDDING_CODES)
def test_every_large_bedding_item_meets_its_minimum(code):
    result = calculate(QuoteInput(items=(QuoteItem(code, 1),)))

    assert result.has_large_bedding_or_weighted is True
    assert result.total >= LARGE_BEDDING_MINIMUM


@pytest.mark.parametrize("weight", ["0.5", "5", "17.54", "40"])
def test_weighted_blanket_meets_large_bedding_minimum(weight):
    result = calculate(QuoteInput(items=(QuoteItem("weighted_blanket", weight_lbs=Decimal(weight)),)))

    assert result.has_large_bedding_or_weighted is True
    assert result.total >= LARGE_BEDDING_MINIMUM


def test_zero_wash_weight_adds_no_wash_line():
    result = calculate(QuoteInput(wash_weight_lbs=Decimal("0")))

    assert result.total == Decimal("0.00")
    assert result.line_items == []


@pytest.mark.parametrize("value", ["NaN", "Infinity", Decimal("-Infinity"), Decimal("sNaN")])
def test_money_rejects_non_finite_values(value):
    with pytest.raises(ValueError):
        D(value)
