import math

DPI = 300
CM_PER_INCH = 2.54
PT_PER_INCH = 72.0


def round_half_away(value: float) -> int:
    # Python's round() is banker's rounding; pixel math must round .5 away from zero.
    if value >= 0:
        return int(math.floor(value + 0.5))
    return -int(math.floor(-value + 0.5))


def cm_to_px(cm: float, dpi: int = DPI) -> int:
    return round_half_away(float(cm) * dpi / CM_PER_INCH)


def mm_to_px(mm: float, dpi: int = DPI) -> int:
    return cm_to_px(float(mm) / 10.0, dpi=dpi)


def cm_to_pt(cm: float) -> float:
    return float(cm) / CM_PER_INCH * PT_PER_INCH


def mm_to_pt(mm: float) -> float:
    return cm_to_pt(float(mm) / 10.0)


def is_finite_number(value) -> bool:
    if isinstance(value, bool):
        return False
    try:
        return math.isfinite(float(value))
    except (TypeError, ValueError):
        return False
