"""Raster export of rendered check-in QR surfaces."""

import io
import re
import unicodedata
from pathlib import Path

from PIL import Image

from dojoqr.logging import audit, get_logger, trace

log = get_logger("exporter")

FILE_PREFIX = "qrcode"
DEFAULT_SLUG = "checkin"
EXTENSIONS = {"PNG": "png", "JPEG": "jpg", "WEBP": "webp"}
# Formats written without an alpha channel get flattened on this colour
FLATTEN_BG = (255, 255, 255)

_UNSAFE_RUN = re.compile(r"[^a-z0-9]+")


def sanitize_filename(name: str | None) -> str:
    """Fold to ASCII, lower-case, and hyphenate: ``"Dojo São Paulo #1"`` → ``"dojo-sao-paulo-1"``."""
    folded = unicodedata.normalize("NFKD", name or "").encode("ascii", "ignore").decode("ascii")
    slug = _UNSAFE_RUN.sub("-", folded.lower()).strip("-")
    return slug or DEFAULT_SLUG


def _prepare(surface: Image.Image, fmt: str) -> Image.Image:
    if fmt == "JPEG" and surface.mode in ("RGBA", "LA", "P"):
        flat = Image.new("RGB", surface.size, FLATTEN_BG)
        flat.paste(surface.convert("RGBA"), mask=surface.convert("RGBA").getchannel("A"))
        return flat
    return surface


def _format(fmt: str) -> str:
    key = fmt.upper().replace("JPG", "JPEG")
    if key not in EXTENSIONS:
        raise ValueError(f"unsupported raster format {fmt!r}; use one of {sorted(EXTENSIONS)}")
    return key


def encode_raster(surface: Image.Image, fmt: str = "PNG") -> bytes:
    """Serialize the surface to an in-memory image file."""
    key = _format(fmt)
    buf = io.BytesIO()
    _prepare(surface, key).save(buf, format=key)
    return buf.getvalue()


@trace
def export_raster(
    surface: Image.Image,
    suggested_name: str,
    directory: str | Path = ".",
    fmt: str = "PNG",
) -> Path:
    """Write the surface as ``qrcode-<slug>.<ext>`` under *directory*."""
    key = _format(fmt)
    out_dir = Path(directory)
    out_dir.mkdir(parents=True, exist_ok=True)
    path = out_dir / f"{FILE_PREFIX}-{sanitize_filename(suggested_name)}.{EXTENSIONS[key]}"
    path.write_bytes(encode_raster(surface, key))
    audit("export.saved", logger=log, path=str(path), format=key,
          size=f"{surface.size[0]}x{surface.size[1]}")
    return path
