"""Centre artwork: load the location's logo, or draw the lettered fallback disc."""

import asyncio
import io
from pathlib import Path

import httpx
import numpy as np
from PIL import Image, ImageDraw, ImageFont, ImageOps

from dojoqr.colors import RGB, WHITE, Palette, lighten
from dojoqr.identity import CheckinIdentity
from dojoqr.logging import audit, get_logger, trace

log = get_logger("logo")

SOURCE_LOGO = "logo"
SOURCE_FALLBACK = "fallback"

GRADIENT_LIGHTEN = 0.4
GLYPH_SCALE = 0.8  # glyph height relative to the disc radius
SUPERSAMPLE = 4

_FONT_CANDIDATES = (
    "DejaVuSans-Bold.ttf",
    "LiberationSans-Bold.ttf",
    "Arial Bold.ttf",
    "arialbd.ttf",
)


class LogoLoadError(OSError):
    """The configured logo could not be fetched or decoded."""


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

def _decode(raw: bytes | str | Path) -> Image.Image:
    source = io.BytesIO(raw) if isinstance(raw, bytes) else raw
    try:
        with Image.open(source) as img:
            img.load()
            return img.convert("RGBA")
    except (OSError, ValueError, Image.DecompressionBombError) as e:
        raise LogoLoadError(f"cannot decode logo: {e}") from e


async def _fetch(client: httpx.AsyncClient, url: str, timeout: float) -> bytes:
    r = await client.get(url, timeout=timeout)
    r.raise_for_status()
    return r.content


@trace
async def load_logo(
    resource: str,
    client: httpx.AsyncClient | None = None,
    timeout: float = 10.0,
) -> Image.Image:
    """Fetch a logo from an http(s) URL or read it from a local path.

    Returns an RGBA image. Any network, HTTP status, or decode problem is
    raised as ``LogoLoadError``.
    """
    if resource.startswith(("http://", "https://")):
        try:
            if client is None:
                async with httpx.AsyncClient(follow_redirects=True) as own_client:
                    raw = await _fetch(own_client, resource, timeout)
            else:
                raw = await _fetch(client, resource, timeout)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise LogoLoadError(f"cannot fetch logo: {e}") from e
        return await asyncio.to_thread(_decode, raw)

    return await asyncio.to_thread(_decode, Path(resource))


# ---------------------------------------------------------------------------
# Artwork
# ---------------------------------------------------------------------------

def fit_logo(image: Image.Image, diameter: int) -> Image.Image:
    """Cover-scale *image* into a ``diameter`` square, centre-cropped."""
    return ImageOps.fit(image.convert("RGBA"), (diameter, diameter), Image.LANCZOS)


def initial_glyph(display_name: str | None) -> str:
    """First visible character of the name, upper-cased."""
    name = (display_name or "").strip()
    return name[0].upper() if name else "?"


def _bold_font(px: int) -> ImageFont.ImageFont:
    for name in _FONT_CANDIDATES:
        try:
            return ImageFont.truetype(name, px)
        except OSError:
            continue
    return ImageFont.load_default(size=px)


def disc_mask(diameter: int) -> Image.Image:
    """Anti-aliased circular mask (mode 'L'), rendered at 4x and downscaled."""
    big = Image.new("L", (diameter * SUPERSAMPLE, diameter * SUPERSAMPLE), 0)
    ImageDraw.Draw(big).ellipse([0, 0, big.size[0] - 1, big.size[1] - 1], fill=255)
    return big.resize((diameter, diameter), Image.LANCZOS)


@trace
def synthetic_logo(display_name: str, primary: RGB, diameter: int) -> Image.Image:
    """Diagonal gradient disc (primary → lightened primary) with the name's initial."""
    idx = np.arange(diameter, dtype=np.float64)
    t = (idx[:, None] + idx[None, :]) / max(1, 2 * (diameter - 1))

    start = np.array(primary[:3], dtype=np.float64)
    end = np.array(lighten(primary, GRADIENT_LIGHTEN), dtype=np.float64)
    rgb = start + (end - start) * t[..., None]

    rgba = np.zeros((diameter, diameter, 4), dtype=np.uint8)
    rgba[..., :3] = np.clip(rgb.round(), 0, 255).astype(np.uint8)
    rgba[..., 3] = np.array(disc_mask(diameter))
    art = Image.fromarray(rgba, "RGBA")

    radius = diameter / 2
    draw = ImageDraw.Draw(art)
    draw.text(
        (radius, radius),
        initial_glyph(display_name),
        font=_bold_font(max(1, int(radius * GLYPH_SCALE))),
        fill=WHITE,
        anchor="mm",
    )
    return art


class LogoCompositor:
    """Produces the centre artwork for a render pass.

    The loader is injectable so views and tests can control when (and
    whether) the asynchronous load completes.
    """

    def __init__(self, loader=load_logo):
        self._loader = loader

    def fallback(self, identity: CheckinIdentity, palette: Palette, diameter: int) -> Image.Image:
        return synthetic_logo(identity.display_name, palette.primary, diameter)

    async def artwork(
        self,
        identity: CheckinIdentity,
        palette: Palette,
        diameter: int,
    ) -> tuple[Image.Image, str]:
        """Return ``(artwork, source)``; load failures resolve to the fallback."""
        if identity.logo_resource:
            try:
                logo = await self._loader(identity.logo_resource)
            except LogoLoadError as e:
                log.warning("Logo unavailable for %s, drawing fallback: %s", identity.location_id, e)
                audit("logo.fallback", logger=log, location=identity.location_id, reason=str(e))
            else:
                audit("logo.loaded", logger=log, location=identity.location_id,
                      size=f"{logo.size[0]}x{logo.size[1]}")
                return fit_logo(logo, diameter), SOURCE_LOGO
        return self.fallback(identity, palette, diameter), SOURCE_FALLBACK
