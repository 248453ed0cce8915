"""
Colour conversions and WCAG contrast adjustment.

HSL values use degrees for hue and percentages for saturation/lightness,
all as integers.
"""

import math
from typing import Any, Dict, Optional, Tuple

WCAG_AA_CONTRAST = 4.5
BLACK = "#000000"
WHITE = "#ffffff"


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def hsl_to_rgb(h: float, s: float, l: float) -> Tuple[int, int, int]:
    h = (h % 360) / 360.0
    s = clamp(s, 0, 100) / 100.0
    l = clamp(l, 0, 100) / 100.0

    c = (1 - abs(2 * l - 1)) * s
    x = c * (1 - abs((h * 6) % 2 - 1))
    m = l - c / 2

    if h < 1 / 6:
        r, g, b = c, x, 0.0
    elif h < 2 / 6:
        r, g, b = x, c, 0.0
    elif h < 3 / 6:
        r, g, b = 0.0, c, x
    elif h < 4 / 6:
        r, g, b = 0.0, x, c
    elif h < 5 / 6:
        r, g, b = x, 0.0, c
    else:
        r, g, b = c, 0.0, x

    return (
        int(round((r + m) * 255)),
        int(round((g + m) * 255)),
        int(round((b + m) * 255)),
    )


def rgb_to_hsl(r: int, g: int, b: int) -> Tuple[int, int, int]:
    r_, g_, b_ = r / 255.0, g / 255.0, b / 255.0
    high = max(r_, g_, b_)
    low = min(r_, g_, b_)
    l = (high + low) / 2

    if high == low:
        return 0, 0, int(round(l * 100))

    d = high - low
    s = d / (2 - high - low) if l > 0.5 else d / (high + low)
    if high == r_:
        h = (g_ - b_) / d + (6 if g_ < b_ else 0)
    elif high == g_:
        h = (b_ - r_) / d + 2
    else:
        h = (r_ - g_) / d + 4
    h /= 6

    return int(round(h * 360)) % 360, int(round(s * 100)), int(round(l * 100))


def rgb_to_hex(rgb: Tuple[int, int, int]) -> str:
    return "#{:02x}{:02x}{:02x}".format(*rgb)


def hex_to_rgb(value: str) -> Tuple[int, int, int]:
    """Parse ``#rrggbb`` or ``#rgb``.

    Raises:
        ValueError: If value is not a hex colour
    """
    text = value.strip().lstrip("#")
    if len(text) == 3:
        text = "".join(ch * 2 for ch in text)
    if len(text) != 6:
        raise ValueError(f"not a hex colour: {value!r}")
    return int(text[0:2], 16), int(text[2:4], 16), int(text[4:6], 16)


def relative_luminance(rgb: Tuple[int, int, int]) -> float:
    def channel(v: int) -> float:
        c = v / 255.0
        return c / 12.92 if c <= 0.03928 else ((c + 0.055) / 1.055) ** 2.4

    r, g, b = rgb
    return 0.2126 * channel(r) + 0.7152 * channel(g) + 0.0722 * channel(b)


def contrast_ratio(a: Tuple[int, int, int], b: Tuple[int, int, int]) -> float:
    la, lb = relative_luminance(a), relative_luminance(b)
    lighter, darker = max(la, lb), min(la, lb)
    return (lighter + 0.05) / (darker + 0.05)


def best_text_color(rgb: Tuple[int, int, int]) -> Tuple[str, float]:
    """Black or white text, whichever reads better on rgb."""
    on_black = contrast_ratio(rgb, (0, 0, 0))
    on_white = contrast_ratio(rgb, (255, 255, 255))
    if on_black >= on_white:
        return BLACK, on_black
    return WHITE, on_white


def ensure_accessible(h: float, s: float, l: float,
                      min_contrast: float = WCAG_AA_CONTRAST) -> Dict[str, Any]:
    """Nudge lightness until the colour supports readable text.

    Light colours get lighter and dark colours darker, two points at a time,
    until black or white text reaches ``min_contrast``. Pure lightness
    extremes always qualify, so this terminates.

    Returns:
        Swatch dict with ``h``, ``s``, ``l``, ``hex``, ``text_color``,
        ``contrast``
    """
    h = int(round(h)) % 360
    s = int(round(clamp(s, 0, 100)))
    l = int(round(clamp(l, 0, 100)))

    text, ratio = best_text_color(hsl_to_rgb(h, s, l))
    step = 2 if text == BLACK else -2
    while ratio < min_contrast and 0 < l < 100:
        l = int(clamp(l + step, 0, 100))
        text, ratio = best_text_color(hsl_to_rgb(h, s, l))

    return {
        "h": h,
        "s": s,
        "l": l,
        "hex": rgb_to_hex(hsl_to_rgb(h, s, l)),
        "text_color": text,
        "contrast": round(ratio, 2),
    }


def coerce_hsl(value: Any) -> Optional[Tuple[float, float, float]]:
    """Read an HSL triple from the loose forms models return.

    Accepts ``{"h", "s", "l"}`` mappings, ``[h, s, l]`` lists and hex
    strings. Returns None for anything else.
    """
    try:
        if isinstance(value, dict):
            if {"h", "s", "l"} <= set(value):
                triple = float(value["h"]), float(value["s"]), float(value["l"])
            elif "hex" in value:
                triple = rgb_to_hsl(*hex_to_rgb(str(value["hex"])))
            else:
                return None
        elif isinstance(value, str):
            triple = rgb_to_hsl(*hex_to_rgb(value))
        elif isinstance(value, (list, tuple)) and len(value) == 3:
            triple = tuple(float(v) for v in value)
        else:
            return None
    except (TypeError, ValueError):
        return None
    if not all(math.isfinite(v) for v in triple):
        return None
    return triple
