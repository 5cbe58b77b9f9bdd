"""Circular branded QR renderer.

The symbol is drawn with inverted polarity: the disc is filled with the
brand colour and every dark module becomes a light dot. Two classes of
modules are deliberately left out:

* a keep-out ring around the centre logo, and
* everything beyond the disc edge (the corners of the square grid).

Decodability then rests on ECC level H. ``padding_ratio``,
``logo_zone_ratio`` and the edge margin together decide how many modules are
lost, so they live in one ``Geometry`` group and are only ever tuned
together; ``tests/test_decodability.py`` pins the defaults against real
decoders.
"""

import math
from dataclasses import dataclass, field
from typing import Callable

from PIL import Image, ImageChops, ImageDraw

from dojoqr.colors import Palette, contrast_ratio, resolve_palette
from dojoqr.generator import QRMatrix, build_checkin_url, generate
from dojoqr.identity import CheckinIdentity
from dojoqr.logging import audit, get_logger, trace
from dojoqr.logo import SOURCE_FALLBACK, LogoCompositor, disc_mask, initial_glyph

log = get_logger("circular")

SOURCE_PENDING = "pending"

# Fraction of modules each ECC level can recover, scaled by a safety margin
ECC_RECOVERY = {"L": 0.07, "M": 0.15, "Q": 0.25, "H": 0.30}
BUDGET_MARGIN = 0.8

FINDER_SPAN = 7
MIN_DOT_CONTRAST = 4.5


# ---------------------------------------------------------------------------
# Geometry
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Geometry:
    """Coupled layout constants for the circular symbol.

    All lengths scale with ``size`` except the pixel margins, which are
    measured on the rendered surface.
    """

    size: int = 600
    padding_ratio: float = 0.16
    logo_zone_ratio: float = 0.12
    dot_ratio: float = 0.42
    logo_clearance_modules: float = 1.5
    edge_margin_px: float = 12
    clip_inset_px: float = 2
    backing_margin_px: float = 6

    def __post_init__(self):
        if self.size <= 0:
            raise ValueError(f"size must be positive, got {self.size}")
        if not 0 <= self.padding_ratio < 0.5:
            raise ValueError(f"padding_ratio must be in [0, 0.5), got {self.padding_ratio}")
        if not 0 < self.logo_zone_ratio < 0.5:
            raise ValueError(f"logo_zone_ratio must be in (0, 0.5), got {self.logo_zone_ratio}")
        if not 0 < self.dot_ratio <= 0.5:
            raise ValueError(f"dot_ratio must be in (0, 0.5], got {self.dot_ratio}")

    @property
    def center(self) -> float:
        return self.size / 2

    @property
    def outer_radius(self) -> float:
        return self.size / 2

    @property
    def padding(self) -> float:
        return self.size * self.padding_ratio

    @property
    def logo_zone_radius(self) -> float:
        return self.size * self.logo_zone_ratio

    @property
    def logo_diameter(self) -> int:
        return max(1, round(2 * self.logo_zone_radius))

    @property
    def edge_limit(self) -> float:
        return self.outer_radius - self.edge_margin_px

    def module_size(self, module_count: int) -> float:
        return (self.size - 2 * self.padding) / module_count

    def dot_radius(self, module_count: int) -> float:
        return self.dot_ratio * self.module_size(module_count)

    def center_keepout(self, module_count: int) -> float:
        return self.logo_zone_radius + self.logo_clearance_modules * self.module_size(module_count)


def _bbox(cx: float, cy: float, r: float) -> list[float]:
    return [cx - r, cy - r, cx + r, cy + r]


def _in_finder(row: int, col: int, n: int) -> bool:
    top = row < FINDER_SPAN
    left = col < FINDER_SPAN
    return (top and left) or (top and col >= n - FINDER_SPAN) or (row >= n - FINDER_SPAN and left)


# ---------------------------------------------------------------------------
# Dot plan
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DotPlan:
    """Which dark modules survive, and what the dropped ones cost."""

    module_count: int
    module_size: float
    dot_radius: float
    dots: tuple[tuple[float, float], ...]
    total_dark: int
    dropped_center: int
    dropped_edge: int
    finder_dropped: int
    damaged_cells: int

    @property
    def dropped(self) -> int:
        return self.dropped_center + self.dropped_edge

    @property
    def drop_fraction(self) -> float:
        """Share of dark modules not drawn."""
        return self.dropped / self.total_dark if self.total_dark else 0.0

    @property
    def damaged_fraction(self) -> float:
        """Share of all cells inside a skip zone, dark or light."""
        return self.damaged_cells / (self.module_count ** 2)

    def within_budget(self, ecc: str = "H") -> bool:
        limit = ECC_RECOVERY[ecc.upper()] * BUDGET_MARGIN
        return self.damaged_fraction <= limit and self.finder_dropped == 0


@trace
def plan_dots(matrix: QRMatrix, geometry: Geometry) -> DotPlan:
    """Map every dark module to a dot centre, or drop it.

    A module is dropped when its centre lies inside the logo keep-out
    circle or beyond the edge limit.
    """
    n = matrix.module_count
    ms = geometry.module_size(n)
    c = geometry.center
    keepout = geometry.center_keepout(n)
    edge = geometry.edge_limit

    dots = []
    total_dark = dropped_center = dropped_edge = finder_dropped = damaged = 0
    for r in range(n):
        y = geometry.padding + (r + 0.5) * ms
        for col in range(n):
            x = geometry.padding + (col + 0.5) * ms
            dist = math.hypot(x - c, y - c)
            in_center = dist < keepout
            beyond_edge = dist > edge
            if in_center or beyond_edge:
                damaged += 1
            if not matrix.is_dark(r, col):
                continue
            total_dark += 1
            if in_center:
                dropped_center += 1
            elif beyond_edge:
                dropped_edge += 1
            else:
                dots.append((x, y))
                continue
            if _in_finder(r, col, n):
                finder_dropped += 1

    return DotPlan(
        module_count=n,
        module_size=ms,
        dot_radius=geometry.dot_radius(n),
        dots=tuple(dots),
        total_dark=total_dark,
        dropped_center=dropped_center,
        dropped_edge=dropped_edge,
        finder_dropped=finder_dropped,
        damaged_cells=damaged,
    )


# ---------------------------------------------------------------------------
# Drawing
# ---------------------------------------------------------------------------

def _clip(layer: Image.Image, mask: Image.Image) -> Image.Image:
    """Restrict an RGBA layer's alpha to a mask."""
    layer.putalpha(ImageChops.multiply(layer.getchannel("A"), mask))
    return layer


@trace
def render_base(matrix: QRMatrix, palette: Palette, geometry: Geometry,
                plan: DotPlan | None = None) -> Image.Image:
    """Draw background disc, module dots and the logo backing disc."""
    plan = plan or plan_dots(matrix, geometry)
    s = geometry.size
    c = geometry.center
    fg = tuple(palette.foreground) + (255,)

    surface = Image.new("RGBA", (s, s), (0, 0, 0, 0))
    ImageDraw.Draw(surface).ellipse(_bbox(c, c, geometry.outer_radius), fill=tuple(palette.primary) + (255,))

    clip_mask = Image.new("L", (s, s), 0)
    ImageDraw.Draw(clip_mask).ellipse(_bbox(c, c, geometry.outer_radius - geometry.clip_inset_px), fill=255)

    layer = Image.new("RGBA", (s, s), (0, 0, 0, 0))
    draw = ImageDraw.Draw(layer)
    for x, y in plan.dots:
        draw.ellipse(_bbox(x, y, plan.dot_radius), fill=fg)
    draw.ellipse(_bbox(c, c, geometry.logo_zone_radius + geometry.backing_margin_px), fill=fg)

    surface.alpha_composite(_clip(layer, clip_mask))
    return surface


def paint_logo_zone(surface: Image.Image, artwork: Image.Image, geometry: Geometry) -> None:
    """Composite *artwork* into the centre logo circle, clipped to it."""
    d = geometry.logo_diameter
    tile = artwork.convert("RGBA")
    if tile.size != (d, d):
        tile = tile.resize((d, d), Image.LANCZOS)
    tile = _clip(tile, disc_mask(d))
    offset = round(geometry.center - d / 2)
    surface.alpha_composite(tile, dest=(offset, offset))


# ---------------------------------------------------------------------------
# Render passes
# ---------------------------------------------------------------------------

@dataclass(eq=False)
class RenderPass:
    """One self-contained render: captured inputs plus the surface it owns."""

    generation: int
    identity: CheckinIdentity
    payload: str = field(repr=False)
    matrix: QRMatrix = field(repr=False)
    palette: Palette
    plan: DotPlan = field(repr=False)
    surface: Image.Image = field(repr=False)
    glyph: str
    logo_source: str = SOURCE_PENDING

    @property
    def complete(self) -> bool:
        return self.logo_source != SOURCE_PENDING


def _always_current() -> bool:
    return True


class CircularRenderer:
    """Builds circular check-in QR surfaces for ``CheckinIdentity`` snapshots."""

    def __init__(self, origin: str, geometry: Geometry | None = None,
                 compositor: LogoCompositor | None = None):
        self.origin = origin
        self.geometry = geometry or Geometry()
        self.compositor = compositor or LogoCompositor()

    def _check_plan(self, plan: DotPlan, ecc: str) -> None:
        audit("render.plan", logger=log,
              modules=f"{plan.module_count}x{plan.module_count}",
              dots=len(plan.dots), dropped_center=plan.dropped_center,
              dropped_edge=plan.dropped_edge, finder_dropped=plan.finder_dropped,
              damaged=f"{plan.damaged_fraction:.1%}")
        if not plan.within_budget(ecc):
            log.warning(
                "Geometry drops %.1f%% of cells (%d finder modules); scannability at risk",
                plan.damaged_fraction * 100, plan.finder_dropped,
            )

    def _paint(self, pass_: RenderPass, artwork: Image.Image, source: str) -> None:
        paint_logo_zone(pass_.surface, artwork, self.geometry)
        pass_.logo_source = source
        audit("render.logo_painted", logger=log, generation=pass_.generation, source=source)

    @trace
    def begin(self, identity: CheckinIdentity, generation: int = 0) -> RenderPass:
        """Synchronous part of a render: everything but a remote logo.

        Raises ``PayloadTooLargeError`` before any surface is allocated when
        the check-in URL does not fit a QR symbol at level H.
        """
        payload = build_checkin_url(self.origin, identity.checkin_token)
        matrix = generate(payload, ecc="H")
        palette = resolve_palette(identity.primary_color, identity.accent_color)

        ratio = contrast_ratio(palette.foreground, palette.primary)
        if ratio < MIN_DOT_CONTRAST:
            log.warning("Dot contrast %.1f:1 on %s is below %.1f:1", ratio, identity.location_id,
                        MIN_DOT_CONTRAST)

        plan = plan_dots(matrix, self.geometry)
        self._check_plan(plan, matrix.ecc)

        pass_ = RenderPass(
            generation=generation,
            identity=identity,
            payload=payload,
            matrix=matrix,
            palette=palette,
            plan=plan,
            surface=render_base(matrix, palette, self.geometry, plan),
            glyph=initial_glyph(identity.display_name),
        )
        audit("render.begin", logger=log, location=identity.location_id, generation=generation,
              version=matrix.version, size=self.geometry.size, logo=bool(identity.logo_resource))

        if not identity.logo_resource:
            artwork = self.compositor.fallback(identity, palette, self.geometry.logo_diameter)
            self._paint(pass_, artwork, SOURCE_FALLBACK)
        return pass_

    async def complete(self, pass_: RenderPass,
                       is_current: Callable[[], bool] = _always_current) -> bool:
        """Load the logo and paint it, unless the pass was superseded meanwhile.

        Returns False when the artwork was discarded as stale.
        """
        if pass_.complete:
            return True
        artwork, source = await self.compositor.artwork(
            pass_.identity, pass_.palette, self.geometry.logo_diameter,
        )
        if not is_current():
            audit("render.stale_discarded", logger=log,
                  location=pass_.identity.location_id, generation=pass_.generation, source=source)
            return False
        self._paint(pass_, artwork, source)
        return True

    @trace
    async def render(self, identity: CheckinIdentity) -> RenderPass:
        """Full render, awaiting the logo."""
        pass_ = self.begin(identity)
        await self.complete(pass_)
        return pass_
