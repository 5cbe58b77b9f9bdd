"""QR matrix generation for check-in URLs."""

from dataclasses import dataclass
from enum import Enum

import qrcode
import qrcode.constants
from PIL import Image, ImageDraw
from qrcode.exceptions import DataOverflowError

from dojoqr.logging import audit, get_logger, trace

log = get_logger("generator")

CHECKIN_PATH = "/checkin/"
MAX_VERSION = 40


class ECCLevel(Enum):
    L = qrcode.constants.ERROR_CORRECT_L  # 7%
    M = qrcode.constants.ERROR_CORRECT_M  # 15%
    Q = qrcode.constants.ERROR_CORRECT_Q  # 25%
    H = qrcode.constants.ERROR_CORRECT_H  # 30%


ECC_NAMES = {"L": ECCLevel.L, "M": ECCLevel.M, "Q": ECCLevel.Q, "H": ECCLevel.H}


class PayloadTooLargeError(ValueError):
    """The payload does not fit the largest QR version at the requested ECC level."""

    def __init__(self, length: int, ecc: str):
        super().__init__(
            f"payload of {length} characters does not fit a version {MAX_VERSION} "
            f"QR symbol at error-correction level {ecc}"
        )
        self.length = length
        self.ecc = ecc


@dataclass(frozen=True)
class QRMatrix:
    """Square module grid; True = dark module."""

    version: int
    ecc: str
    modules: tuple[tuple[bool, ...], ...]

    @property
    def module_count(self) -> int:
        return len(self.modules)

    def is_dark(self, row: int, col: int) -> bool:
        return self.modules[row][col]


def build_checkin_url(origin: str, token: str) -> str:
    """Public check-in URL for a location token: ``{origin}/checkin/{token}``."""
    return origin.rstrip("/") + CHECKIN_PATH + token


@trace
def generate(payload: str, ecc: str = "H") -> QRMatrix:
    """Encode *payload* into the smallest QR symbol that fits at *ecc*.

    Raises:
        ValueError: unknown ECC letter.
        PayloadTooLargeError: the payload exceeds version 40 capacity.
    """
    try:
        ecc_level = ECC_NAMES[ecc.upper()]
    except KeyError:
        raise ValueError(f"unknown error-correction level {ecc!r}") from None

    qr = qrcode.QRCode(
        version=None,
        error_correction=ecc_level.value,
        box_size=1,
        border=0,
    )
    qr.add_data(payload)
    try:
        qr.make(fit=True)
    except DataOverflowError as e:
        log.error("Payload of %d chars overflows ECC %s", len(payload), ecc.upper())
        raise PayloadTooLargeError(len(payload), ecc.upper()) from e

    matrix = QRMatrix(
        version=qr.version,
        ecc=ecc.upper(),
        modules=tuple(tuple(bool(m) for m in row) for row in qr.modules),
    )
    size = matrix.module_count
    audit("qr.matrix_generated", logger=log,
          payload=payload, version=matrix.version, size=f"{size}x{size}", ecc=matrix.ecc)
    return matrix


@trace
def render_plain(
    matrix: QRMatrix,
    box_size: int = 10,
    border: int = 4,
    fill_color: tuple[int, ...] = (0, 0, 0),
    back_color: tuple[int, ...] = (255, 255, 255),
) -> Image.Image:
    """Render the matrix as a conventional square QR (dark on light, quiet zone)."""
    n = matrix.module_count
    total_px = (n + border * 2) * box_size
    img = Image.new("RGB", (total_px, total_px), back_color)
    draw = ImageDraw.Draw(img)
    for r in range(n):
        for c in range(n):
            if matrix.is_dark(r, c):
                x0 = (c + border) * box_size
                y0 = (r + border) * box_size
                draw.rectangle([x0, y0, x0 + box_size - 1, y0 + box_size - 1], fill=fill_color)
    return img
