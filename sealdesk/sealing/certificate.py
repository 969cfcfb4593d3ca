### sealdesk/sealing/certificate.py

"""
Certificate of Completion.

Advisory evidence printed next to the sealed document: envelope subject,
document hashes, the signer table with delegation chains, identity and
QES evidence, and the full audit trail.
"""

# Standard library imports
from io import BytesIO
from typing import Dict, Iterable, List
from xml.sax.saxutils import escape

# Third party imports
from reportlab.lib import colors
from reportlab.lib.pagesizes import LETTER
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

# Local imports
from sealdesk.sealing.schemas import CertificateData, CertificateSigner
from sealdesk.utils.logger import get_logger
from sealdesk.utils.storage import DocumentStorage

logger = get_logger(__name__)

HEADER_COLOR = colors.HexColor("#2661E8")
TABLE_STYLE = TableStyle([
    ("BACKGROUND", (0, 0), (-1, 0), HEADER_COLOR),
    ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
    ("ALIGN", (0, 0), (-1, -1), "LEFT"),
    ("VALIGN", (0, 0), (-1, -1), "TOP"),
    ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
    ("FONTSIZE", (0, 0), (-1, -1), 8),
    ("BOTTOMPADDING", (0, 0), (-1, 0), 6),
    ("BACKGROUND", (0, 1), (-1, -1), colors.whitesmoke),
    ("GRID", (0, 0), (-1, -1), 0.25, colors.grey),
])
FOOTER = (
    "This certificate was generated automatically by Sealdesk. Electronic signatures are "
    "legally binding under the ESIGN Act (US), eIDAS (EU), and equivalent laws."
)


def _fmt(value) -> str:
    if value is None or value == "":
        return "-"
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)


def delegation_chain(signer, by_id: Dict) -> List[str]:
    """Names of the signers this one was delegated from, nearest first"""
    chain = []
    seen = {signer.id}
    current = by_id.get(signer.delegated_from) if signer.delegated_from else None
    while current is not None and current.id not in seen:
        chain.append(f"{current.name} <{current.email}>")
        seen.add(current.id)
        current = by_id.get(current.delegated_from) if current.delegated_from else None
    return chain


def collect_certificate_data(envelope, audit_events: Iterable, verifications: Iterable) -> CertificateData:
    """Assemble certificate content from the envelope and its evidence"""
    by_id = {s.id: s for s in envelope.signers}
    identity, qes = [], []
    for record in verifications:
        entry = {
            "signer": by_id[record.signer_id].email if record.signer_id in by_id else record.signer_id,
            "method": record.method,
            "provider": record.provider,
            "status": record.status,
            "verified_at": _fmt(record.verified_at),
            **(record.evidence or {}),
        }
        (qes if record.method == "qes" else identity).append(entry)

    return CertificateData(
        envelope_id=envelope.id,
        subject=envelope.subject or "Untitled Document",
        completed_at=envelope.completed_at,
        document_hashes={
            d.filename: d.sealed_hash or d.document_hash for d in envelope.documents
        },
        signers=[
            CertificateSigner(
                name=s.name,
                email=s.email,
                status=s.status,
                signed_at=s.signed_at,
                consented_at=s.consented_at,
                ip_address=s.ip_address,
                delegation_chain=delegation_chain(s, by_id),
            )
            for s in envelope.signers
        ],
        identity_evidence=identity,
        qes_evidence=qes,
        audit_trail=[
            {
                "sequence": e.sequence,
                "timestamp": e.timestamp,
                "event_type": e.event_type,
                "signer_id": e.signer_id,
                "ip_address": e.ip_address,
                "event_hash": e.event_hash,
            }
            for e in audit_events
        ],
    )


def build_certificate_pdf(data: CertificateData) -> bytes:
    """Render the certificate as a paginated PDF"""
    buffer = BytesIO()
    doc = SimpleDocTemplate(
        buffer, pagesize=LETTER, rightMargin=40, leftMargin=40, topMargin=40, bottomMargin=40,
        title="Certificate of Completion", invariant=1,
    )
    styles = getSampleStyleSheet()
    small = styles["BodyText"].clone("Small", fontSize=8, leading=10)
    mono = styles["Code"].clone("Mono", fontSize=7, leading=9)

    def cell(value, style=small):
        return Paragraph(escape(_fmt(value)), style)

    elements = [
        Paragraph("Certificate of Completion", styles["Title"]),
        Paragraph("Electronic Signature Audit Trail", styles["Heading3"]),
        Spacer(1, 12),
        Paragraph("Document Information", styles["Heading2"]),
    ]
    info = [["Field", "Value"],
            ["Subject", cell(data.subject)],
            ["Envelope ID", cell(data.envelope_id, mono)],
            ["Completed At", cell(data.completed_at)]]
    for filename, digest in data.document_hashes.items():
        info.append([cell(f"SHA-256 {filename}"), cell(digest, mono)])
    elements += [_table(info, [140, 390]), Spacer(1, 12)]

    elements.append(Paragraph("Signers", styles["Heading2"]))
    rows = [["#", "Name", "Email", "Status", "Signed", "IP Address", "Delegated From"]]
    for index, signer in enumerate(data.signers, start=1):
        rows.append([
            str(index), cell(signer.name), cell(signer.email), cell(signer.status),
            cell(signer.signed_at), cell(signer.ip_address, mono),
            cell(" <- ".join(signer.delegation_chain) if signer.delegation_chain else None),
        ])
    elements += [_table(rows, [20, 80, 110, 50, 95, 70, 105]), Spacer(1, 12)]

    if data.identity_evidence:
        elements.append(Paragraph("Identity Verification", styles["Heading2"]))
        rows = [["Signer", "Method", "Provider", "Status", "Verified At", "Fallback"]]
        for ev in data.identity_evidence:
            rows.append([
                cell(ev.get("signer")), cell(ev.get("method")), cell(ev.get("provider")),
                cell(ev.get("status")), cell(ev.get("verified_at")),
                cell(ev.get("fallback_from") and f"{ev['fallback_from']} ({ev.get('fallback_reason')})"),
            ])
        elements += [_table(rows, [110, 70, 70, 60, 110, 110]), Spacer(1, 12)]

    if data.qes_evidence:
        elements.append(Paragraph("Qualified Electronic Signatures", styles["Heading2"]))
        rows = [["Signer", "TSP", "Certificate Serial", "QSCD Reference", "Timestamp"]]
        for ev in data.qes_evidence:
            rows.append([
                cell(ev.get("signer")), cell(ev.get("tsp_name")), cell(ev.get("certificate_serial"), mono),
                cell(ev.get("qscd_reference"), mono), cell(ev.get("timestamp")),
            ])
        elements += [_table(rows, [110, 110, 100, 100, 110]), Spacer(1, 12)]

    elements.append(Paragraph("Audit Trail", styles["Heading2"]))
    rows = [["#", "Timestamp", "Event", "Signer", "IP", "Event Hash"]]
    for event in data.audit_trail:
        rows.append([
            str(event["sequence"]), cell(event["timestamp"]), cell(event["event_type"]),
            cell(event["signer_id"], mono), cell(event["ip_address"], mono), cell(event["event_hash"], mono),
        ])
    elements += [_table(rows, [20, 105, 75, 95, 60, 175]), Spacer(1, 18)]

    elements.append(Paragraph(escape(FOOTER), small))
    doc.build(elements)
    return buffer.getvalue()


def _table(rows: List[List], col_widths: List[int]) -> Table:
    table = Table(rows, colWidths=col_widths, repeatRows=1)
    table.setStyle(TABLE_STYLE)
    return table


class CertificateGenerator:
    """Renders certificates and stores them"""

    def __init__(self, storage: DocumentStorage):
        self.storage = storage

    def generate(self, data: CertificateData) -> str:
        pdf = build_certificate_pdf(data)
        key = self.storage.put(pdf, {
            "envelope_id": data.envelope_id,
            "filename": f"certificate_{data.envelope_id}.pdf",
            "content_type": "application/pdf",
        })
        logger.info("Completion certificate generated", envelope_id=data.envelope_id, key=key, size=len(pdf))
        return key
