import pytest

from dojoqr.generator import (
    PayloadTooLargeError,
    QRMatrix,
    build_checkin_url,
    generate,
    render_plain,
)

PAYLOADS = [
    "https://dojo-control.app/checkin/abc-123",
    "https://dojo-control.app/checkin/q8Zr0vX3kPp1nM9sT4wYbLcE",
    "https://dojo-control.app/checkin/abc-123?utm_source=poster&utm_medium=print&room=2",
]


def test_checkin_url_shape():
    assert build_checkin_url("https://dojo.app", "abc-123") == "https://dojo.app/checkin/abc-123"
    assert build_checkin_url("https://dojo.app/", "abc-123") == "https://dojo.app/checkin/abc-123"


@pytest.mark.parametrize("payload", ["a", *PAYLOADS])
def test_matrix_is_square_and_standard_sized(payload):
    matrix = generate(payload)
    n = matrix.module_count
    assert n >= 21
    assert n == matrix.version * 4 + 17
    assert all(len(row) == n for row in matrix.modules)
    assert matrix.ecc == "H"


def test_longer_payload_never_shrinks_symbol():
    short = generate(PAYLOADS[0])
    long = generate(PAYLOADS[2])
    assert long.version >= short.version


def test_is_dark_reads_modules():
    matrix = generate("https://dojo-control.app/checkin/abc-123")
    # Finder pattern: dark outer ring, light separator
    assert matrix.is_dark(0, 0)
    assert matrix.is_dark(6, 6)
    assert not matrix.is_dark(7, 7)


def test_matrix_is_immutable():
    matrix = generate("x")
    assert isinstance(matrix, QRMatrix)
    with pytest.raises(AttributeError):
        matrix.version = 2


def test_unknown_ecc_level_rejected():
    with pytest.raises(ValueError):
        generate("x", ecc="Z")


def test_oversized_payload_raises():
    # Version 40-H holds 1273 bytes
    with pytest.raises(PayloadTooLargeError) as exc:
        generate("https://dojo-control.app/checkin/" + "x" * 1300)
    assert exc.value.ecc == "H"
    assert isinstance(exc.value, ValueError)


def test_payload_that_fits_at_low_ecc_still_overflows_at_h():
    payload = "x" * 1500
    assert generate(payload, ecc="L").version <= 40
    with pytest.raises(PayloadTooLargeError):
        generate(payload, ecc="H")


def test_render_plain_dimensions():
    matrix = generate("x")
    img = render_plain(matrix, box_size=4, border=2)
    assert img.size == ((matrix.module_count + 4) * 4,) * 2
    # Quiet zone is light, first finder module dark
    assert img.getpixel((0, 0)) == (255, 255, 255)
    assert img.getpixel((8, 8)) == (0, 0, 0)


@pytest.mark.parametrize("payload", PAYLOADS)
def test_plain_rendering_decodes(payload):
    verify = pytest.importorskip("dojoqr.verify")
    img = render_plain(generate(payload))
    assert verify.is_decodable(img, payload)
