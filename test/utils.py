import base64
import logging
from datetime import datetime, timedelta
from io import BytesIO
from typing import List, Optional

from PIL import Image
from reportlab.lib.pagesizes import LETTER
from reportlab.pdfgen import canvas

from sealdesk.integrations.base import Integration
from sealdesk.workflow.schemas import EnvelopeCreate

logger = logging.getLogger(__name__)


def make_pdf(pages: int = 1) -> bytes:
    """Small deterministic PDF with one line of text per page"""
    buf = BytesIO()
    c = canvas.Canvas(buf, pagesize=LETTER, invariant=1)
    for number in range(1, pages + 1):
        c.drawString(72, 720, f"Test agreement page {number}")
        c.showPage()
    c.save()
    return buf.getvalue()


def pdf_base64(pages: int = 1) -> str:
    return base64.b64encode(make_pdf(pages)).decode("ascii")


def signature_data_url() -> str:
    image = Image.new("RGBA", (120, 40), (255, 255, 255, 0))
    for x in range(10, 110):
        image.putpixel((x, 20), (0, 0, 0, 255))
    buf = BytesIO()
    image.save(buf, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode("ascii")


def signature_field(field_id: str, signer_index: int, page: int = 1, **extra) -> dict:
    field = {
        "id": field_id, "type": "signature", "page": page,
        "x": 10, "y": 80, "width": 30, "height": 8,
        "signer_index": signer_index, "required": True,
    }
    field.update(extra)
    return field


def text_field(field_id: str, signer_index: Optional[int], **extra) -> dict:
    field = {
        "id": field_id, "type": "text", "page": 1,
        "x": 10, "y": 20, "width": 40, "height": 5,
        "signer_index": signer_index,
    }
    field.update(extra)
    return field


def build_envelope(
    signers: List[dict],
    fields: Optional[List[dict]] = None,
    pages: int = 1,
    **extra,
) -> EnvelopeCreate:
    """Envelope payload with one PDF; by default every signer gets a signature field"""
    if fields is None:
        fields = [signature_field(f"sig-{i}", i) for i in range(len(signers))]
    payload = {
        "subject": "Master services agreement",
        "message": "Please review and sign",
        "signers": signers,
        "documents": [{
            "filename": "agreement.pdf",
            "content_base64": pdf_base64(pages),
            "fields": fields,
        }],
    }
    payload.update(extra)
    return EnvelopeCreate.model_validate(payload)


def signer_by_email(envelope, email: str):
    return next(s for s in envelope.signers if s.email == email)


class FrozenClock:
    """Callable clock that only moves when told to"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingNotifier:
    """Notification dispatcher that keeps everything it was asked to send"""

    def __init__(self):
        self.notified = []
        self.reminders = []
        self.email_codes = {}
        self.sms_codes = {}

    def notify_signer(self, signer, token: str) -> None:
        self.notified.append((signer.email, token))

    def send_reminder(self, signer) -> None:
        self.reminders.append(signer.email)

    def send_email_code(self, email: str, code: str) -> None:
        self.email_codes[email] = code

    def send_sms_code(self, phone: str, code: str) -> None:
        self.sms_codes[phone] = code

    def notified_emails(self) -> List[str]:
        return [email for email, _ in self.notified]


class RecordingIntegration(Integration):
    name = "recorder"
    display_name = "Recorder"

    def __init__(self, config=None):
        super().__init__(config)
        self.events = []

    def handle(self, event_name, payload):
        logger.debug("Integration event %s", event_name)
        self.events.append((event_name, payload))
        super().handle(event_name, payload)

    def names(self) -> List[str]:
        return [name for name, _ in self.events]
