"""QR rendering of the current token window."""
import base64
import io
import json

import qrcode

from rollcall.models import TokenWindow


class QRRenderer:
    """Renders a token window as a scannable QR code."""

    def __init__(self, box_size: int = 10, border: int = 4):
        self.box_size = box_size
        self.border = border

    @staticmethod
    def encode_payload(window: TokenWindow, paused: bool = False) -> str:
        """Compact JSON carried inside the QR code."""
        return json.dumps(window.render_payload(paused), separators=(',', ':'))

    def render(self, window: TokenWindow, paused: bool = False) -> dict:
        """
        Render ``window`` to a base64 PNG data URI.
        Returns the render payload with an added ``qrImage`` field.
        """
        qr = qrcode.QRCode(
            version=None,
            error_correction=qrcode.constants.ERROR_CORRECT_H,
            box_size=self.box_size,
            border=self.border,
        )
        qr.add_data(self.encode_payload(window, paused))
        qr.make(fit=True)

        img = qr.make_image(fill_color="black", back_color="white")

        buffered = io.BytesIO()
        img.save(buffered, format="PNG")
        img_str = base64.b64encode(buffered.getvalue()).decode()

        payload = window.render_payload(paused)
        payload['qrImage'] = f"data:image/png;base64,{img_str}"
        return payload
