"""
Translation between the light model and the WiZ "pilot" wire format.

A pilot is the flat property bag a WiZ device reports and accepts:
power (``state``), dimming (``dimming``, 10-100), color channels
(``r``/``g``/``b`` plus cold/warm white ``c``/``w``), white temperature in
Kelvin (``temp``), effect speed (``speed``) and scene id (``sceneId``).

The light model used by the rest of the library works in a different set
of units: brightness 0-100, hue 0-360, saturation 0-100 and color
temperature in mireds. Everything in this module is pure and stateless.
"""

import math
from dataclasses import dataclass, fields, replace
from typing import Any, Dict, Mapping, Optional, TypedDict

from .color import hsv_to_rgb, rgb_to_hsv


# Device dimming range (percent)
MIN_DIMMING = 10
MAX_DIMMING = 100

# Device white temperature range (Kelvin)
MIN_KELVIN = 2200
MAX_KELVIN = 6500

# Effect speed range
MIN_SPEED = 1
MAX_SPEED = 100


def _clamp(value, low, high):
    return max(low, min(high, value))


def encode_brightness(brightness: float) -> int:
    """
    Map brightness from the 0-100 model scale to the 10-100 device scale.

    Args:
        brightness: Brightness in percent (0-100).

    Returns:
        Device dimming value, always within 10-100.
    """
    return _clamp(math.floor(brightness * 90 / 100 + 10 + 0.5), MIN_DIMMING, MAX_DIMMING)


def decode_brightness(dimming: float) -> float:
    """
    Map device dimming (10-100) back to the 0-100 model scale.

    Args:
        dimming: Dimming value reported by the device.

    Returns:
        Brightness in percent, never negative.
    """
    return max((dimming - 10) * 100 / 90, 0)


def mireds_to_kelvin(mireds: float) -> int:
    """
    Convert a color temperature in mireds to Kelvin (truncated).

    Raises:
        ValueError: If mireds is not positive.
    """
    if mireds <= 0:
        raise ValueError(f"Color temperature must be positive, got {mireds}")
    return math.trunc(1e6 / mireds)


def kelvin_to_mireds(kelvin: float) -> int:
    """
    Convert a color temperature in Kelvin to mireds (truncated).

    Raises:
        ValueError: If kelvin is not positive.
    """
    if kelvin <= 0:
        raise ValueError(f"Color temperature must be positive, got {kelvin}")
    return math.trunc(1e6 / kelvin)


class PilotBuilder:
    """
    Fluent builder for setPilot parameters.

    Out-of-range values are clamped rather than rejected so that nothing
    outside the device's accepted range ever reaches the wire.

    Example:
        ```python
        params = PilotBuilder().set_power(True).set_brightness(55).to_params()
        ```
    """

    def __init__(self):
        self._params: Dict[str, Any] = {}

    def set_power(self, on: bool) -> "PilotBuilder":
        self._params["state"] = bool(on)
        return self

    def set_brightness(self, dimming: int) -> "PilotBuilder":
        """Set device dimming, clamped to 10-100."""
        self._params["dimming"] = _clamp(int(dimming), MIN_DIMMING, MAX_DIMMING)
        return self

    def set_rgbww(
        self,
        r: int,
        g: int,
        b: int,
        cw: Optional[int] = None,
        ww: Optional[int] = None
    ) -> "PilotBuilder":
        """
        Set the color channels.

        Args:
            r: Red channel (0-255).
            g: Green channel (0-255).
            b: Blue channel (0-255).
            cw: Optional cold white channel (0-255).
            ww: Optional warm white channel (0-255).
        """
        self._params["r"] = _clamp(int(r), 0, 255)
        self._params["g"] = _clamp(int(g), 0, 255)
        self._params["b"] = _clamp(int(b), 0, 255)
        if cw is not None:
            self._params["c"] = _clamp(int(cw), 0, 255)
        if ww is not None:
            self._params["w"] = _clamp(int(ww), 0, 255)
        return self

    def clear_rgbww(self) -> "PilotBuilder":
        for key in ("r", "g", "b", "c", "w"):
            self._params.pop(key, None)
        return self

    def set_white_temperature(self, kelvin: int) -> "PilotBuilder":
        """Set white temperature in Kelvin, clamped to 2200-6500."""
        self._params["temp"] = _clamp(int(kelvin), MIN_KELVIN, MAX_KELVIN)
        return self

    def clear_white_temperature(self) -> "PilotBuilder":
        self._params.pop("temp", None)
        return self

    def set_effect_speed(self, speed: int) -> "PilotBuilder":
        """Set effect speed, clamped to 1-100."""
        self._params["speed"] = _clamp(int(speed), MIN_SPEED, MAX_SPEED)
        return self

    def set_scene(self, scene_id: int) -> "PilotBuilder":
        self._params["sceneId"] = int(scene_id)
        return self

    def to_params(self) -> Dict[str, Any]:
        """
        Get the built parameters.

        Returns:
            A copy of the parameter dictionary.
        """
        return dict(self._params)


@dataclass
class PilotState:
    """
    A pilot as reported by a device, in device units.

    Attributes:
        powered_on: Whether the light is on.
        brightness: Dimming, 10-100.
        r: Red channel.
        g: Green channel.
        b: Blue channel.
        cw: Cold white channel.
        ww: Warm white channel.
        white_temperature: White temperature in Kelvin.
        effect_speed: Effect speed, 1-100.
        scene: Active scene id.
    """
    powered_on: Optional[bool] = None
    brightness: Optional[int] = None
    r: Optional[int] = None
    g: Optional[int] = None
    b: Optional[int] = None
    cw: Optional[int] = None
    ww: Optional[int] = None
    white_temperature: Optional[int] = None
    effect_speed: Optional[int] = None
    scene: Optional[int] = None


def parse_pilot(params: Mapping[str, Any]) -> PilotState:
    """
    Parse getPilot result / syncPilot params into a PilotState.

    Missing fields are left as None.
    """
    return PilotState(
        powered_on=params.get("state"),
        brightness=params.get("dimming"),
        r=params.get("r"),
        g=params.get("g"),
        b=params.get("b"),
        cw=params.get("c"),
        ww=params.get("w"),
        white_temperature=params.get("temp"),
        effect_speed=params.get("speed"),
        scene=params.get("sceneId"),
    )


@dataclass
class ObservedState:
    """
    State of a light in model units.

    Exactly one color mode is populated: either ``temperature`` (mireds)
    or ``hue``/``saturation``. Both may be None when the device has not
    reported color information yet.

    Attributes:
        powered_on: Whether the light is on.
        brightness: Brightness in percent (0-100).
        hue: Hue in degrees (0-360), or None.
        saturation: Saturation in percent (0-100), or None.
        temperature: Color temperature in mireds, or None.
    """
    powered_on: bool = False
    brightness: float = 100.0
    hue: Optional[float] = None
    saturation: Optional[float] = None
    temperature: Optional[int] = None

    def merged(self, properties: Mapping[str, Any]) -> "ObservedState":
        """
        Return a copy with the given properties overwritten.

        Args:
            properties: Partial properties keyed by field name.

        Returns:
            A new ObservedState.
        """
        return replace(self, **properties)


class DesiredProperties(TypedDict, total=False):
    """A partial desired state; every key is optional."""
    powered_on: bool
    brightness: float
    hue: Optional[float]
    saturation: Optional[float]
    temperature: Optional[int]


# Keys accepted in a desired-state patch
PROPERTY_KEYS = tuple(f.name for f in fields(ObservedState))

_COLOR_KEYS = ("hue", "saturation")


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def select_color_mode(properties: Mapping[str, Any]) -> DesiredProperties:
    """
    Make a patch name exactly one color mode.

    A non-null temperature clears hue and saturation unless the patch
    sets them too, and a non-null hue or saturation clears temperature
    unless the patch sets it.

    Args:
        properties: Partial desired properties.

    Returns:
        A copy of the patch with the other mode's fields set to None.
    """
    patch = DesiredProperties(**properties)
    if patch.get("temperature") is not None:
        for key in _COLOR_KEYS:
            patch.setdefault(key, None)
    if any(patch.get(key) is not None for key in _COLOR_KEYS):
        patch.setdefault("temperature", None)
    return patch


def validate_properties(properties: Mapping[str, Any]) -> DesiredProperties:
    """
    Check the names and values of a patch and resolve its color mode.

    Args:
        properties: Partial desired properties.

    Returns:
        The patch with the color mode resolved by select_color_mode().

    Raises:
        ValueError: If a property is unknown or its value is invalid.
    """
    unknown = set(properties) - set(PROPERTY_KEYS)
    if unknown:
        raise ValueError(f"Unknown light properties: {', '.join(sorted(unknown))}")

    if "powered_on" in properties and not isinstance(properties["powered_on"], bool):
        raise ValueError(f"powered_on must be a bool, got {properties['powered_on']!r}")
    if "brightness" in properties and not _is_number(properties["brightness"]):
        raise ValueError(f"brightness must be a number, got {properties['brightness']!r}")
    for key in _COLOR_KEYS:
        value = properties.get(key)
        if value is not None and not _is_number(value):
            raise ValueError(f"{key} must be a number or None, got {value!r}")

    temperature = properties.get("temperature")
    if temperature is not None and not (_is_number(temperature) and temperature > 0):
        raise ValueError(f"temperature must be a positive number of mireds, got {temperature!r}")

    if temperature is not None and any(
        properties.get(key) is not None for key in _COLOR_KEYS
    ):
        raise ValueError("temperature and hue/saturation cannot be set together")

    return select_color_mode(properties)


def encode_command(
    properties: DesiredProperties,
    defaults: ObservedState
) -> Dict[str, Any]:
    """
    Build setPilot parameters from a partial patch.

    The patch names one color mode (see select_color_mode()); other
    properties missing from it fall back to ``defaults``. When both hue
    and saturation are None a white temperature command is built;
    otherwise an RGB command derived from HSV at full value.

    Args:
        properties: Partial desired properties.
        defaults: Last observed state of the device.

    Returns:
        The setPilot params dictionary.
    """
    state = defaults.merged(select_color_mode(properties))

    builder = PilotBuilder()
    builder.set_power(state.powered_on)
    builder.set_brightness(encode_brightness(state.brightness))

    if state.hue is None and state.saturation is None:
        if state.temperature:
            builder.set_white_temperature(mireds_to_kelvin(state.temperature))
    else:
        r, g, b = hsv_to_rgb(state.hue or 0, state.saturation or 0, 100)
        builder.set_rgbww(r, g, b)

    return builder.to_params()


def decode_status(params: Mapping[str, Any]) -> ObservedState:
    """
    Build an ObservedState from getPilot/syncPilot parameters.

    Args:
        params: The getPilot result or syncPilot params.

    Returns:
        The observed state in model units.
    """
    pilot = parse_pilot(params)

    hue = saturation = temperature = None
    if pilot.white_temperature:
        temperature = kelvin_to_mireds(pilot.white_temperature)
    elif pilot.r is not None and pilot.g is not None and pilot.b is not None:
        hue, saturation, _ = rgb_to_hsv(pilot.r, pilot.g, pilot.b)

    return ObservedState(
        powered_on=bool(pilot.powered_on),
        brightness=decode_brightness(pilot.brightness or 0),
        hue=hue,
        saturation=saturation,
        temperature=temperature,
    )
