import base64
import io

import qrcode

import backend.config as config


def render_qr_data_url(token: str) -> str:
    """Render a scan token as a base64 PNG data URL for the presenter screen."""
    qr = qrcode.QRCode(
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=config.QR_IMAGE_BOX_SIZE,
        border=config.QR_IMAGE_BORDER,
    )
    qr.add_data(token)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")

    buf = io.BytesIO()
    img.save(buf, format="PNG")
    qr_b64 = base64.b64encode(buf.getvalue()).decode("utf-8")
    return f"data:image/png;base64,{qr_b64}"
