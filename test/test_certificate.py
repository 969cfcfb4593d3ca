from datetime import datetime, timezone
from io import BytesIO
from types import SimpleNamespace

from pypdf import PdfReader

from sealdesk.sealing.certificate import (
    CertificateGenerator, build_certificate_pdf, collect_certificate_data, delegation_chain,
)

COMPLETED_AT = datetime(2026, 1, 6, 15, 30, tzinfo=timezone.utc)


def _signer(signer_id, name, email, delegated_from=None, status="signed"):
    return SimpleNamespace(
        id=signer_id, name=name, email=email, status=status, delegated_from=delegated_from,
        signed_at=COMPLETED_AT if status == "signed" else None,
        consented_at=None, ip_address="10.0.0.7",
    )


def _envelope():
    signers = [
        _signer("s1", "Alice Sender", "alice@example.com", status="declined"),
        _signer("s2", "Dan Deputy", "dan@example.com", delegated_from="s1"),
        _signer("s3", "Bob Counter", "bob@example.com"),
    ]
    documents = [SimpleNamespace(filename="agreement.pdf", document_hash="a" * 64, sealed_hash="b" * 64)]
    return SimpleNamespace(
        id="env-1", subject="Master services agreement", completed_at=COMPLETED_AT,
        signers=signers, documents=documents,
    )


def _events():
    return [
        SimpleNamespace(sequence=1, timestamp="2026-01-05T09:00:00+00:00", event_type="created",
                        signer_id=None, ip_address=None, event_hash="1" * 64),
        SimpleNamespace(sequence=2, timestamp="2026-01-06T15:30:00+00:00", event_type="signed",
                        signer_id="s3", ip_address="10.0.0.7", event_hash="2" * 64),
    ]


def _verifications():
    return [
        SimpleNamespace(signer_id="s3", method="email_sms", provider="internal", status="verified",
                        verified_at=COMPLETED_AT, evidence={"evidence_ref": "ev-1"}),
        SimpleNamespace(signer_id="s2", method="qes", provider="swisscom", status="verified",
                        verified_at=COMPLETED_AT, evidence={"certificate_serial": "MOCK-1"}),
    ]


def test_delegation_chain_walks_back_to_original_signer():
    envelope = _envelope()
    by_id = {s.id: s for s in envelope.signers}
    assert delegation_chain(by_id["s2"], by_id) == ["Alice Sender <alice@example.com>"]
    assert delegation_chain(by_id["s3"], by_id) == []


def test_collect_certificate_data():
    data = collect_certificate_data(_envelope(), _events(), _verifications())

    assert data.document_hashes == {"agreement.pdf": "b" * 64}
    assert [s.email for s in data.signers] == ["alice@example.com", "dan@example.com", "bob@example.com"]
    assert data.signers[1].delegation_chain == ["Alice Sender <alice@example.com>"]
    assert data.identity_evidence[0]["signer"] == "bob@example.com"
    assert data.identity_evidence[0]["evidence_ref"] == "ev-1"
    assert data.qes_evidence[0]["certificate_serial"] == "MOCK-1"
    assert [e["event_type"] for e in data.audit_trail] == ["created", "signed"]


def test_certificate_pdf_is_readable():
    pdf = build_certificate_pdf(collect_certificate_data(_envelope(), _events(), _verifications()))
    reader = PdfReader(BytesIO(pdf))

    assert len(reader.pages) >= 1
    text = "".join(page.extract_text() for page in reader.pages)
    assert "Certificate of Completion" in text
    assert "Master services agreement" in text


def test_generator_stores_certificate(storage):
    data = collect_certificate_data(_envelope(), _events(), [])
    key = CertificateGenerator(storage).generate(data)

    assert key.startswith("envelopes/env-1/")
    assert storage.get(key).startswith(b"%PDF")
