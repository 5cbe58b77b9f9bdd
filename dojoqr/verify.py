"""Scan verification for rendered check-in codes, using real QR decoders.

The circular artwork is light-on-dark and transparent outside the disc.
Decoders expect dark-on-light with a quiet zone, so ``prepare_for_scan``
flattens onto black and inverts before decoding, the way a phone camera
app's inverted-code fallback would see it.
"""

import time
from dataclasses import dataclass, field

import cv2
import numpy as np
from PIL import Image, ImageEnhance, ImageFilter, ImageOps
from pyzbar.pyzbar import decode as pyzbar_decode

from dojoqr.logging import audit, get_logger, trace

log = get_logger("verify")

SCAN_BORDER = 40  # px of light margin added around prepared images


@dataclass
class ScanResult:
    """Result of a single scan attempt."""
    success: bool
    decoded_data: str | None = None
    decode_time_ms: float = 0.0
    decoder: str = ""
    variant: str = "raw"
    error: str | None = None


@dataclass
class StressTestResult:
    """Result of a full stress test battery."""
    original: ScanResult = field(default_factory=lambda: ScanResult(success=False))
    blur_results: dict[str, ScanResult] = field(default_factory=dict)
    brightness_results: dict[str, ScanResult] = field(default_factory=dict)
    rotation_results: dict[str, ScanResult] = field(default_factory=dict)
    total_tests: int = 0
    total_passed: int = 0

    @property
    def pass_rate(self) -> float:
        return self.total_passed / self.total_tests if self.total_tests > 0 else 0.0

    def summary(self) -> str:
        lines = [
            f"Stress Test Summary: {self.total_passed}/{self.total_tests} passed ({self.pass_rate:.1%})",
            f"  Original:    {'PASS' if self.original.success else 'FAIL'} ({self.original.decode_time_ms:.1f}ms)",
        ]
        for category, results in [
            ("Blur", self.blur_results),
            ("Brightness", self.brightness_results),
            ("Rotation", self.rotation_results),
        ]:
            passed = sum(1 for r in results.values() if r.success)
            lines.append(f"  {category:12s}: {passed}/{len(results)} passed")
            for name, r in results.items():
                status = "PASS" if r.success else "FAIL"
                lines.append(f"    {name:20s}: {status} ({r.decode_time_ms:.1f}ms)")
        return "\n".join(lines)


def _result(decoder: str, start: float, data: str | None, error: str | None = None) -> ScanResult:
    elapsed = (time.perf_counter() - start) * 1000
    if data:
        return ScanResult(success=True, decoded_data=data, decode_time_ms=elapsed, decoder=decoder)
    return ScanResult(success=False, decode_time_ms=elapsed, decoder=decoder,
                      error=error or "No QR code detected")


def scan_pyzbar(image: Image.Image) -> ScanResult:
    """Scan a QR code using pyzbar (wraps ZBar)."""
    start = time.perf_counter()
    try:
        results = pyzbar_decode(image.convert("L"))
    except Exception as e:  # zbar reports decoder faults as plain exceptions
        return _result("pyzbar/zbar", start, None, str(e))
    data = results[0].data.decode("utf-8", errors="replace") if results else None
    return _result("pyzbar/zbar", start, data)


def scan_opencv(image: Image.Image) -> ScanResult:
    """Scan a QR code using OpenCV's built-in QR detector."""
    start = time.perf_counter()
    try:
        gray = np.array(image.convert("L"))
        data, _points, _ = cv2.QRCodeDetector().detectAndDecode(gray)
    except cv2.error as e:
        return _result("opencv", start, None, str(e))
    return _result("opencv", start, data or None)


SCANNERS = (scan_pyzbar, scan_opencv)


def prepare_for_scan(image: Image.Image) -> Image.Image:
    """Greyscale, dark-on-light version of a (possibly transparent) artwork."""
    rgba = image.convert("RGBA")
    flat = Image.new("RGB", rgba.size, (0, 0, 0))
    flat.paste(rgba, mask=rgba.getchannel("A"))
    gray = flat.convert("L")
    # Mostly dark means light modules on a dark field: invert
    if np.asarray(gray).mean() < 128:
        gray = ImageOps.invert(gray)
    return ImageOps.expand(gray, border=SCAN_BORDER, fill=255)


def _variants(image: Image.Image) -> list[tuple[str, Image.Image]]:
    prepared = prepare_for_scan(image)
    return [
        ("raw", image.convert("RGB")),
        ("prepared", prepared),
        ("softened", prepared.filter(ImageFilter.GaussianBlur(radius=1.5))),
        ("half", prepared.resize((prepared.width // 2, prepared.height // 2), Image.LANCZOS)),
    ]


def _check(result: ScanResult, expected_data: str | None) -> ScanResult:
    if result.success and expected_data is not None and result.decoded_data != expected_data:
        result.success = False
        result.error = f"Data mismatch: got '{result.decoded_data}', expected '{expected_data}'"
    return result


@trace
def verify(
    image: Image.Image,
    expected_data: str | None = None,
    variants: tuple[str, ...] | None = None,
) -> list[ScanResult]:
    """Run every decoder over the image variants.

    *variants* restricts the attempts to the named ones (``raw``,
    ``prepared``, ``softened``, ``half``). Returns one ScanResult per
    decoder: the first variant that decoded, or the last failure.
    """
    attempts = [(name, img) for name, img in _variants(image) if variants is None or name in variants]
    results = []
    for scanner in SCANNERS:
        result = ScanResult(success=False)
        for name, img in attempts:
            result = _check(scanner(img), expected_data)
            result.variant = name
            if result.success:
                break
        audit("scan.verified", logger=log, decoder=result.decoder, variant=result.variant,
              success=result.success, time_ms=round(result.decode_time_ms, 1), error=result.error)
        results.append(result)
    return results


def is_decodable(image: Image.Image, expected_data: str) -> bool:
    return any(r.success for r in verify(image, expected_data=expected_data))


@trace
def apply_blur(image: Image.Image, radius: float) -> Image.Image:
    """Apply Gaussian blur."""
    return image.filter(ImageFilter.GaussianBlur(radius=radius))


@trace
def apply_brightness(image: Image.Image, factor: float) -> Image.Image:
    """Adjust brightness. factor=1.0 is original, <1 darker, >1 brighter."""
    return ImageEnhance.Brightness(image).enhance(factor)


@trace
def apply_rotation(image: Image.Image, degrees: float) -> Image.Image:
    """Rotate image by degrees (with white background fill)."""
    return image.rotate(degrees, expand=True, fillcolor=255)


@trace
def stress_test(
    image: Image.Image,
    expected_data: str | None = None,
    decoder: str = "pyzbar",
) -> StressTestResult:
    """Run a battery of print-and-photograph distortions on a rendered code.

    Tests (applied to the scan-prepared image):
        - Gaussian blur: radius 1, 2, 3
        - Brightness: 0.6 (dim), 1.5 (bright)
        - Rotation: ±15°, ±45°
    """
    scanner = scan_pyzbar if decoder == "pyzbar" else scan_opencv
    base = prepare_for_scan(image)

    def _scan(img: Image.Image) -> ScanResult:
        return _check(scanner(img), expected_data)

    result = StressTestResult()
    result.original = _scan(base)
    result.total_tests = 1
    result.total_passed = 1 if result.original.success else 0

    battery = [
        (result.blur_results, [(f"radius={r}", apply_blur(base, r)) for r in (1, 2, 3)]),
        (result.brightness_results, [(f"factor={f}", apply_brightness(base, f)) for f in (0.6, 1.5)]),
        (result.rotation_results, [(f"{d}°", apply_rotation(base, d)) for d in (-15, 15, -45, 45)]),
    ]
    for bucket, cases in battery:
        for name, img in cases:
            r = _scan(img)
            bucket[name] = r
            result.total_tests += 1
            result.total_passed += 1 if r.success else 0

    audit("stress.completed", logger=log,
          decoder=decoder,
          pass_rate=f"{result.pass_rate:.1%}",
          passed=result.total_passed,
          total=result.total_tests)
    return result
