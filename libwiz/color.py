"""HSV <-> RGB conversion on the scales used by the light model."""

import colorsys
from typing import Tuple


def hsv_to_rgb(hue: float, saturation: float, value: float = 100) -> Tuple[int, int, int]:
    """
    Convert HSV to 8-bit RGB.

    Args:
        hue: Hue in degrees (0-360).
        saturation: Saturation in percent (0-100).
        value: Value in percent (0-100).

    Returns:
        Tuple of (r, g, b), each 0-255.
    """
    r, g, b = colorsys.hsv_to_rgb(
        (hue % 360) / 360.0,
        max(0.0, min(100.0, saturation)) / 100.0,
        max(0.0, min(100.0, value)) / 100.0,
    )
    return round(r * 255), round(g * 255), round(b * 255)


def rgb_to_hsv(r: int, g: int, b: int) -> Tuple[float, float, float]:
    """
    Convert 8-bit RGB to HSV.

    Returns:
        Tuple of (hue 0-360, saturation 0-100, value 0-100).
    """
    h, s, v = colorsys.rgb_to_hsv(r / 255.0, g / 255.0, b / 255.0)
    return h * 360.0, s * 100.0, v * 100.0
