import io
import re

import pytest
from PIL import Image

from dojoqr.exporter import encode_raster, export_raster, sanitize_filename


@pytest.fixture
def surface():
    img = Image.new("RGBA", (60, 60), (0, 0, 0, 0))
    img.paste((109, 40, 217, 255), (10, 10, 50, 50))
    return img


@pytest.mark.parametrize("name, slug", [
    ("Dojo São Paulo #1", "dojo-sao-paulo-1"),
    ("Dojo Central", "dojo-central"),
    ("  Über   Kampf--Schule!! ", "uber-kampf-schule"),
    ("../../etc/passwd", "etc-passwd"),
    ("道場", "checkin"),
    ("", "checkin"),
])
def test_sanitize_filename(name, slug):
    assert sanitize_filename(name) == slug


def test_export_png_filename_is_safe(tmp_path, surface):
    path = export_raster(surface, "Dojo São Paulo #1", directory=tmp_path)
    assert path.parent == tmp_path
    assert re.fullmatch(r"[a-z0-9-]+\.png", path.name)
    assert path.name == "qrcode-dojo-sao-paulo-1.png"
    with Image.open(path) as img:
        assert img.size == (60, 60)
        assert img.mode == "RGBA"


def test_export_jpeg_flattens_transparency(tmp_path, surface):
    path = export_raster(surface, "Dojo Central", directory=tmp_path, fmt="jpg")
    assert path.suffix == ".jpg"
    with Image.open(path) as img:
        assert img.mode == "RGB"
        r, g, b = img.getpixel((0, 0))
        assert min(r, g, b) > 240


def test_encode_raster_round_trips_size(surface):
    data = encode_raster(surface)
    assert data.startswith(b"\x89PNG")
    assert Image.open(io.BytesIO(data)).size == surface.size


def test_unsupported_format(tmp_path, surface):
    with pytest.raises(ValueError):
        export_raster(surface, "x", directory=tmp_path, fmt="TIFF")
