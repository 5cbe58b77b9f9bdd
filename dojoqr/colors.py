"""Colour utilities shared by the QR renderer and report theming.

Brand colours are stored either as hex (``#6d28d9``, ``fff``) or as the
loose HSL triple the theme settings produce (``"262 83% 58%"``). Everything
here is a pure function over ``(r, g, b)`` integer tuples.
"""

import re
from dataclasses import dataclass

RGB = tuple[int, int, int]

DEFAULT_COLOR: RGB = (40, 40, 40)
WHITE: RGB = (255, 255, 255)

ACCENT_LIGHTEN = 0.6
SECONDARY_LIGHTEN = 0.85
LIGHT_BG_LIGHTEN = 0.92

_HEX_RE = re.compile(r"^#?([0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")
# "210 30% 18%", "210, 30%, 18%", "hsl(210, 30%, 18%)"
_HSL_RE = re.compile(
    r"^(?:hsl\s*\(\s*)?(\d+(?:\.\d+)?)(?:deg)?[,\s]+(\d+(?:\.\d+)?)%?[,\s]+(\d+(?:\.\d+)?)%?\s*\)?$",
    re.IGNORECASE,
)


def _clamp_factor(factor: float) -> float:
    return max(0.0, min(1.0, float(factor)))


def hsl_to_rgb(h: float, s: float, l: float) -> RGB:
    """Convert hue in degrees, saturation and lightness in percent to RGB."""
    s = max(0.0, min(100.0, s)) / 100
    l = max(0.0, min(100.0, l)) / 100
    a = s * min(l, 1 - l)

    def f(n: int) -> float:
        k = (n + h / 30) % 12
        return l - a * max(min(k - 3, 9 - k, 1), -1)

    return (round(f(0) * 255), round(f(8) * 255), round(f(4) * 255))


def parse_color(spec: str | None) -> RGB | None:
    """Parse a hex or HSL colour string, returning None when it is not one."""
    if spec is None or not isinstance(spec, str):
        return None
    text = spec.strip()
    if not text:
        return None

    m = _HEX_RE.match(text)
    if m:
        digits = m.group(1)
        if len(digits) == 3:
            digits = "".join(ch * 2 for ch in digits)
        return tuple(int(digits[i : i + 2], 16) for i in (0, 2, 4))

    m = _HSL_RE.match(text)
    if m:
        h, s, l = (float(g) for g in m.groups())
        return hsl_to_rgb(h, s, l)
    return None


def normalize(spec: str | None, fallback: RGB = DEFAULT_COLOR) -> RGB:
    """Resolve any colour spec to RGB; malformed or missing input gives *fallback*."""
    rgb = parse_color(spec)
    return rgb if rgb is not None else tuple(fallback)


def lighten(rgb: RGB, factor: float) -> RGB:
    """Move *rgb* toward white by *factor* (0 = unchanged, 1 = white)."""
    t = _clamp_factor(factor)
    return tuple(round(c + (255 - c) * t) for c in rgb[:3])


def darken(rgb: RGB, factor: float) -> RGB:
    """Move *rgb* toward black by *factor* (0 = unchanged, 1 = black)."""
    t = _clamp_factor(factor)
    return tuple(round(c * (1 - t)) for c in rgb[:3])


def to_hex(rgb: RGB) -> str:
    return "#" + "".join(f"{c:02x}" for c in rgb[:3])


def _linearize(channel: int) -> float:
    """Convert sRGB channel (0-255) to linear light value."""
    c = channel / 255.0
    return c / 12.92 if c <= 0.03928 else ((c + 0.055) / 1.055) ** 2.4


def _luminance(rgb: RGB) -> float:
    """Relative luminance per WCAG 2.0."""
    r, g, b = [_linearize(ch) for ch in rgb[:3]]
    return 0.2126 * r + 0.7152 * g + 0.0722 * b


def contrast_ratio(fg: RGB, bg: RGB) -> float:
    """WCAG contrast ratio between two RGB colours (1.0 – 21.0)."""
    l1 = _luminance(fg)
    l2 = _luminance(bg)
    if l1 < l2:
        l1, l2 = l2, l1
    return (l1 + 0.05) / (l2 + 0.05)


@dataclass(frozen=True)
class Palette:
    """Colours resolved for one render or report."""

    primary: RGB
    accent: RGB
    secondary: RGB
    light_bg: RGB
    foreground: RGB = WHITE


def resolve_palette(
    primary: str | None,
    accent: str | None = None,
    secondary: str | None = None,
    fallback: RGB = DEFAULT_COLOR,
) -> Palette:
    """Resolve brand colours, deriving the ones that are absent from *primary*."""
    base = normalize(primary, fallback)
    return Palette(
        primary=base,
        accent=parse_color(accent) or lighten(base, ACCENT_LIGHTEN),
        secondary=parse_color(secondary) or lighten(base, SECONDARY_LIGHTEN),
        light_bg=lighten(base, LIGHT_BG_LIGHTEN),
    )
