"""Render raw pairing payloads as QR code images."""

import base64
import io

import qrcode
from qrcode.constants import ERROR_CORRECT_M

QR_BOX_SIZE = 8
QR_BORDER = 4


def render_pairing_code(payload: str) -> str:
    """
    Render a raw pairing payload to a PNG data URL.

    Args:
        payload: Raw string emitted by the provider's qr event

    Returns:
        "data:image/png;base64,..." suitable for an <img> tag
    """
    qr = qrcode.QRCode(error_correction=ERROR_CORRECT_M, box_size=QR_BOX_SIZE, border=QR_BORDER)
    qr.add_data(payload)
    qr.make(fit=True)
    image = qr.make_image(fill_color="black", back_color="white")

    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/png;base64,{encoded}"
