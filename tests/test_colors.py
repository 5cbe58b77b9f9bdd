import pytest

from dojoqr.colors import (
    DEFAULT_COLOR,
    contrast_ratio,
    darken,
    hsl_to_rgb,
    lighten,
    normalize,
    parse_color,
    resolve_palette,
    to_hex,
)


@pytest.mark.parametrize("spec", ["#fff", "#ffffff", "fff", "FFFFFF", "  #FfF  "])
def test_hex_white_in_every_spelling(spec):
    assert normalize(spec) == (255, 255, 255)


def test_six_digit_hex():
    assert normalize("#6d28d9") == (0x6D, 0x28, 0xD9)


@pytest.mark.parametrize("spec", ["0 0% 100%", "0, 0%, 100%", "hsl(0, 0%, 100%)", "0 0 100"])
def test_loose_hsl_white(spec):
    assert normalize(spec) == (255, 255, 255)


def test_hsl_primary_hues():
    assert hsl_to_rgb(0, 100, 50) == (255, 0, 0)
    assert hsl_to_rgb(120, 100, 50) == (0, 255, 0)
    assert hsl_to_rgb(240, 100, 50) == (0, 0, 255)


@pytest.mark.parametrize("spec", [None, "", "   ", "#12", "#abcdeg", "not a colour", "#1234", 42])
def test_malformed_input_falls_back(spec):
    assert parse_color(spec) is None
    assert normalize(spec) == DEFAULT_COLOR


def test_caller_supplied_fallback():
    assert normalize(None, fallback=(1, 2, 3)) == (1, 2, 3)


def test_lighten_and_darken_interpolate():
    base = (100, 50, 0)
    assert lighten(base, 0) == base
    assert lighten(base, 1) == (255, 255, 255)
    assert lighten(base, 0.5) == (178, 152, 128)
    assert darken(base, 1) == (0, 0, 0)
    assert darken(base, 0.5) == (50, 25, 0)


def test_factor_is_clamped():
    assert lighten((10, 10, 10), 3) == (255, 255, 255)
    assert darken((10, 10, 10), -1) == (10, 10, 10)


def test_accent_derived_from_primary_when_absent():
    palette = resolve_palette("#6d28d9")
    assert palette.primary == (0x6D, 0x28, 0xD9)
    assert palette.accent == lighten(palette.primary, 0.6)


def test_explicit_accent_wins():
    palette = resolve_palette("#6d28d9", "#000")
    assert palette.accent == (0, 0, 0)


def test_palette_with_garbage_primary_uses_default():
    palette = resolve_palette("???")
    assert palette.primary == DEFAULT_COLOR
    assert palette.accent == lighten(DEFAULT_COLOR, 0.6)


def test_to_hex():
    assert to_hex((109, 40, 217)) == "#6d28d9"


def test_contrast_ratio_bounds():
    assert contrast_ratio((0, 0, 0), (255, 255, 255)) == pytest.approx(21.0)
    assert contrast_ratio((255, 255, 255), (255, 255, 255)) == pytest.approx(1.0)
