from decimal import Decimal, ROUND_HALF_UP

MINOR_UNITS_PER_MAJOR = 100
WHOLE_UNIT = Decimal("1")


def to_minor_units(amount: Decimal | int | float | str) -> int:
    """Major-unit amount (e.g. naira) to the gateway's minor unit (kobo)."""
    minor = Decimal(str(amount)) * MINOR_UNITS_PER_MAJOR
    return int(minor.quantize(WHOLE_UNIT, rounding=ROUND_HALF_UP))


def to_major_units(amount_minor: Decimal | int | str) -> int:
    """Minor-unit amount to whole major units.

    Rounds to the nearest whole unit, so sub-unit amounts are lost:
    490000 -> 4900, 1 -> 0.
    """
    major = Decimal(str(amount_minor)) / MINOR_UNITS_PER_MAJOR
    return int(major.quantize(WHOLE_UNIT, rounding=ROUND_HALF_UP))
