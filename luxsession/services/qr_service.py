import qrcode
import io
import base64


class QRService:
    @staticmethod
    def create_qr_image(data_str: str, box_size: int = 10) -> str:
        """
        Creates a QR code image and returns it as a base64 string
        """
        qr = qrcode.QRCode(
            version=None,
            error_correction=qrcode.constants.ERROR_CORRECT_L,
            box_size=box_size,
            border=4,
        )
        qr.add_data(data_str)
        qr.make(fit=True)

        img = qr.make_image(fill_color="black", back_color="white")

        buffered = io.BytesIO()
        img.save(buffered, format="PNG")
        img_str = base64.b64encode(buffered.getvalue()).decode()
        return img_str

    @staticmethod
    def to_data_url(data_str: str | None) -> str | None:
        """
        Renders a QR payload as a PNG data URL the browser can show directly
        """
        if not data_str:
            return None
        return "data:image/png;base64," + QRService.create_qr_image(data_str)
