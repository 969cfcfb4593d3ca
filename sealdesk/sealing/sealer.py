### sealdesk/sealing/sealer.py

"""
Document sealing.

Signer input is burned into the PDF with a reportlab overlay per page,
merged with pypdf. Field geometry is stored as percentages of the page
with the origin at the top-left; it is converted to PDF points with the
origin at the bottom-left here. The last page carries a seal stamp, and
the seal metadata (hash of the merged document, sealed-at, eIDAS level,
identity evidence) is written into the PDF document information.
"""

# Standard library imports
import base64
import binascii
import json
from collections import defaultdict
from datetime import datetime, timezone
from io import BytesIO
from typing import Dict, Iterable, List, Optional, Tuple

# Third party imports
from PIL import Image
from pypdf import PdfReader, PdfWriter
from pypdf.errors import PdfReadError
from reportlab.lib.utils import ImageReader
from reportlab.pdfbase.pdfmetrics import stringWidth
from reportlab.pdfgen import canvas

# Local imports
from sealdesk import __version__
from sealdesk.fields.schemas import IMAGE_FIELD_TYPES, FieldType
from sealdesk.sealing.schemas import EidasLevel, FieldStamp, SealResult, SealVerification
from sealdesk.utils.hashing import hash_document
from sealdesk.utils.logger import get_logger
from sealdesk.utils.storage import DocumentStorage

logger = get_logger(__name__)

PRODUCER = f"Sealdesk Signing Engine {__version__}"
CHECKED_VALUES = ("true", "on")
TEXT_FONT = "Helvetica"
STAMP_FONT = "Helvetica-Bold"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# === Rendering ===

def decode_image(value: str) -> Optional[Image.Image]:
    """Image from a ``data:image/...;base64,`` URL, or None"""
    if not value or not value.startswith("data:image"):
        return None
    _, _, data = value.partition(",")
    return Image.open(BytesIO(base64.b64decode(data, validate=True))).convert("RGBA")


def _fit_text(text: str, font_size: float, max_width: float) -> str:
    while text and stringWidth(text, TEXT_FONT, font_size) > max_width:
        text = text[:-1]
    return text


def _draw_field(c: canvas.Canvas, stamp: FieldStamp, page_w: float, page_h: float) -> bool:
    x = stamp.x / 100 * page_w
    top = page_h - stamp.y / 100 * page_h
    w = stamp.width / 100 * page_w
    h = stamp.height / 100 * page_h

    if stamp.type in IMAGE_FIELD_TYPES:
        image = decode_image(stamp.value)
        if image is None:
            logger.warning("Signature value is not an image data URL", field_id=stamp.id)
            return False
        scale = min(w / image.width, h / image.height)
        c.drawImage(
            ImageReader(image), x, top - h,
            width=image.width * scale, height=image.height * scale, mask="auto",
        )
    elif stamp.type == FieldType.CHECKBOX:
        box = min(w, h)
        c.setStrokeColorRGB(0, 0, 0)
        c.setLineWidth(1)
        c.rect(x, top - box, box, box, stroke=1, fill=0)
        if stamp.value.strip().lower() in CHECKED_VALUES:
            # "4" is the check mark in ZapfDingbats
            c.setFillColorRGB(0, 0, 0)
            c.setFont("ZapfDingbats", box * 0.8)
            c.drawString(x + 2, top - box + 4, "4")
    else:
        font_size = min(h * 0.6, 12)
        c.setFillColorRGB(0, 0, 0)
        c.setFont(TEXT_FONT, font_size)
        c.drawString(x + 2, top - h / 2 - font_size / 3, _fit_text(stamp.value, font_size, w - 4))
    return True


def _draw_seal_stamp(c: canvas.Canvas, page_h: float, sealed_at: datetime) -> None:
    c.setFillColorRGB(0.3, 0.3, 0.3)
    c.setFont(STAMP_FONT, 8)
    c.drawString(40, page_h - 30, "Digitally Signed Document")
    c.setFillColorRGB(0.5, 0.5, 0.5)
    c.setFont(TEXT_FONT, 7)
    c.drawString(40, page_h - 42, f"Sealed on {sealed_at.isoformat()}")


def _make_overlay(
    page_w: float,
    page_h: float,
    stamps: List[FieldStamp],
    sealed_at: Optional[datetime],
) -> Tuple[bytes, int]:
    """Overlay page of the same size with the field values (and the stamp)"""
    buf = BytesIO()
    # invariant keeps creation date and document id out of the output
    c = canvas.Canvas(buf, pagesize=(page_w, page_h), invariant=1)
    rendered = 0
    for stamp in stamps:
        try:
            if _draw_field(c, stamp, page_w, page_h):
                rendered += 1
        except (OSError, ValueError, binascii.Error) as e:
            logger.error("Failed to render field", field_id=stamp.id, error=str(e), exc_info=True)
    if sealed_at is not None:
        _draw_seal_stamp(c, page_h, sealed_at)
    c.showPage()
    c.save()
    return buf.getvalue(), rendered


def merge_fields(pdf_bytes: bytes, stamps: Iterable[FieldStamp], sealed_at: datetime) -> Tuple[bytes, int]:
    """
    Flatten filled fields into the PDF.

    Only fields that belong to a signer and carry a value are rendered.
    Returns the merged PDF and the number of fields drawn.
    """
    reader = PdfReader(BytesIO(pdf_bytes))
    writer = PdfWriter()

    by_page: Dict[int, List[FieldStamp]] = defaultdict(list)
    for stamp in stamps:
        if not stamp.signer_id or not stamp.value:
            continue
        if not 1 <= stamp.page <= len(reader.pages):
            logger.warning("Field placed on a missing page", field_id=stamp.id, page=stamp.page)
            continue
        by_page[stamp.page - 1].append(stamp)

    last_index = len(reader.pages) - 1
    rendered = 0
    for index, page in enumerate(reader.pages):
        page_stamps = by_page.get(index, [])
        if page_stamps or index == last_index:
            box = page.mediabox
            overlay, count = _make_overlay(
                float(box.width), float(box.height), page_stamps,
                sealed_at if index == last_index else None,
            )
            page.merge_page(PdfReader(BytesIO(overlay)).pages[0])
            rendered += count
        writer.add_page(page)

    out = BytesIO()
    writer.write(out)
    return out.getvalue(), rendered


def seal_pdf(
    pdf_bytes: bytes,
    stamps: Iterable[FieldStamp],
    sealed_at: datetime,
    eidas_level: EidasLevel = EidasLevel.SIMPLE,
    identity_evidence: Optional[List[Dict]] = None,
) -> Tuple[bytes, str, int]:
    """
    Merge the fields and write the seal metadata.

    Returns:
        (sealed PDF bytes, SHA-256 of the merged PDF before metadata, fields drawn)
    """
    merged, rendered = merge_fields(pdf_bytes, stamps, sealed_at)
    merge_hash = hash_document(merged)

    seal_info = {
        "sealdesk_version": __version__,
        "sealed_at": sealed_at.isoformat(),
        "document_hash": merge_hash,
        "hash_algorithm": "SHA-256",
        "eidas_level": EidasLevel(eidas_level).value,
        "identity_verifications": identity_evidence or [],
    }

    writer = PdfWriter()
    writer.append(PdfReader(BytesIO(merged)))
    writer.add_metadata({
        "/Title": "Sealed Document",
        "/Subject": json.dumps(seal_info, sort_keys=True, default=str),
        "/Producer": PRODUCER,
    })
    out = BytesIO()
    writer.write(out)
    return out.getvalue(), merge_hash, rendered


def verify_sealed_document(pdf_bytes: bytes) -> SealVerification:
    """Read the seal metadata back from a sealed PDF"""
    try:
        metadata = PdfReader(BytesIO(pdf_bytes)).metadata
        seal_info = json.loads(metadata.subject) if metadata and metadata.subject else None
    except (PdfReadError, ValueError) as e:
        logger.warning("Could not read seal metadata", error=str(e))
        return SealVerification(valid=False)

    if not isinstance(seal_info, dict) or not seal_info.get("sealdesk_version") or not seal_info.get("document_hash"):
        return SealVerification(valid=False)

    return SealVerification(
        valid=True,
        document_hash=seal_info["document_hash"],
        sealed_at=seal_info.get("sealed_at"),
        eidas_level=seal_info.get("eidas_level"),
        identity_verifications=seal_info.get("identity_verifications", []),
    )


def eidas_level_for(verifications: Iterable[Dict]) -> EidasLevel:
    """Highest level backed by verified evidence"""
    verified = [v for v in verifications if v.get("status") == "verified"]
    if any(v.get("method") == "qes" for v in verified):
        return EidasLevel.QUALIFIED
    if verified:
        return EidasLevel.ADVANCED
    return EidasLevel.SIMPLE


# === Service ===

class DocumentSealer:
    """Seals stored documents and stores the sealed artifact"""

    def __init__(self, storage: DocumentStorage, clock=_utcnow):
        self.storage = storage
        self.clock = clock

    def seal_document(
        self,
        document,
        fields: Iterable,
        eidas_level: EidasLevel = EidasLevel.SIMPLE,
        identity_evidence: Optional[List[Dict]] = None,
    ) -> SealResult:
        original = self.storage.get(document.storage_key)
        sealed_at = self.clock()
        stamps = [FieldStamp.model_validate(f) for f in fields]

        sealed, merge_hash, rendered = seal_pdf(original, stamps, sealed_at, eidas_level, identity_evidence)
        sealed_key = self.storage.put(sealed, {
            "envelope_id": document.envelope_id,
            "filename": f"sealed_{document.filename}",
            "content_type": "application/pdf",
        })

        logger.info(
            "Document sealed",
            document_id=document.id, sealed_key=sealed_key, fields_rendered=rendered,
        )
        return SealResult(
            document_id=document.id,
            sealed_key=sealed_key,
            sealed_hash=hash_document(sealed),
            merge_hash=merge_hash,
            sealed_at=sealed_at,
            eidas_level=eidas_level,
            fields_rendered=rendered,
        )
