from decimal import ROUND_HALF_UP, Decimal

ZERO = Decimal("0.00")
CENT = Decimal("0.01")
RATE_PLACES = Decimal("0.000001")


def to_decimal(value):
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    # str() first so floats keep their printed value, not the binary one
    return Decimal(str(value))


def round2(value):
    """Round to cents, half away from zero."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def round_rate(value):
    return to_decimal(value).quantize(RATE_PLACES, rounding=ROUND_HALF_UP)


def to_cents(value):
    """Integer cents, for report arithmetic that must close exactly."""
    return int(round2(value) * 100)


def from_cents(cents):
    return (Decimal(cents) / 100).quantize(CENT)
