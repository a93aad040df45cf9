"""
QR code helpers: render a student's payload as a PNG and read codes back
out of camera frames.
"""
import base64
import io

import cv2
import numpy as np
import qrcode

_DETECTOR = cv2.QRCodeDetector()


def generate_qr_png(data: str, box_size: int = 10, border: int = 2) -> bytes:
    qr = qrcode.QRCode(
        version=1,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=box_size,
        border=border,
    )
    qr.add_data(data)
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")

    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    return buffer.getvalue()


def generate_qr_base64(data: str, box_size: int = 10, border: int = 2) -> str:
    """Data URL suitable for <img src="..."> on the student card."""
    img_base64 = base64.b64encode(generate_qr_png(data, box_size, border)).decode("utf-8")
    return f"data:image/png;base64,{img_base64}"


def decode_frame(frame: np.ndarray) -> str | None:
    """Return the text of the first QR code in a BGR frame, or None."""
    text, points, _ = _DETECTOR.detectAndDecode(frame)
    if points is None or not text:
        return None
    return text.strip() or None


def decode_qr_from_image(data: bytes) -> str | None:
    img_array = np.frombuffer(data, np.uint8)
    frame = cv2.imdecode(img_array, cv2.IMREAD_COLOR)
    if frame is None:
        raise ValueError("Invalid image data.")
    return decode_frame(frame)
