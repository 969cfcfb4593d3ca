from datetime import datetime, timezone
from io import BytesIO
from types import SimpleNamespace

from pypdf import PdfReader

from sealdesk.sealing.schemas import EidasLevel, FieldStamp
from sealdesk.sealing.sealer import (
    DocumentSealer, eidas_level_for, merge_fields, seal_pdf, verify_sealed_document,
)
from sealdesk.utils.hashing import hash_document
from test.utils import make_pdf, signature_data_url

SEALED_AT = datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc)


def _stamp(field_id, field_type, value, page=1, signer_id="s1"):
    return FieldStamp(
        id=field_id, type=field_type, page=page, x=10, y=20, width=30, height=6,
        value=value, signer_id=signer_id,
    )


def test_merge_renders_only_filled_signer_fields():
    stamps = [
        _stamp("sig", "signature", signature_data_url()),
        _stamp("name", "text", "Alice Sender"),
        _stamp("agree", "checkbox", "true", page=2),
        _stamp("empty", "text", None),
        _stamp("sender_note", "text", "prefilled", signer_id=None),
        _stamp("ghost", "text", "nowhere", page=5),
    ]
    merged, rendered = merge_fields(make_pdf(pages=2), stamps, SEALED_AT)

    assert rendered == 3
    assert len(PdfReader(BytesIO(merged)).pages) == 2


def test_non_image_signature_value_is_skipped():
    _, rendered = merge_fields(make_pdf(), [_stamp("sig", "signature", "Alice")], SEALED_AT)
    assert rendered == 0


def test_seal_metadata_round_trip():
    evidence = [{"signer_id": "s1", "method": "email_sms", "status": "verified"}]
    sealed, merge_hash, rendered = seal_pdf(
        make_pdf(), [_stamp("name", "text", "Alice")], SEALED_AT, EidasLevel.ADVANCED, evidence,
    )

    assert rendered == 1
    result = verify_sealed_document(sealed)
    assert result.valid is True
    assert result.document_hash == merge_hash
    assert result.sealed_at == SEALED_AT.isoformat()
    assert result.eidas_level == "advanced"
    assert result.identity_verifications == evidence
    assert PdfReader(BytesIO(sealed)).metadata.title == "Sealed Document"


def test_stored_artifact_hashes_identically_twice(storage, clock):
    key = storage.put(make_pdf(), {"envelope_id": "env-1", "filename": "contract.pdf"})
    document = SimpleNamespace(id="doc-1", envelope_id="env-1", filename="contract.pdf", storage_key=key)
    result = DocumentSealer(storage, clock=clock).seal_document(document, [])

    first = hash_document(storage.get(result.sealed_key))
    second = hash_document(storage.get(result.sealed_key))
    assert first == second == result.sealed_hash


def test_unsealed_or_garbage_input_is_not_valid():
    assert verify_sealed_document(make_pdf()).valid is False
    assert verify_sealed_document(b"not a pdf at all").valid is False


def test_eidas_level_comes_from_verified_evidence():
    assert eidas_level_for([]) == EidasLevel.SIMPLE
    assert eidas_level_for([{"method": "email_sms", "status": "failed"}]) == EidasLevel.SIMPLE
    assert eidas_level_for([{"method": "email_sms", "status": "verified"}]) == EidasLevel.ADVANCED
    assert eidas_level_for([
        {"method": "email_sms", "status": "verified"},
        {"method": "qes", "status": "verified"},
    ]) == EidasLevel.QUALIFIED
    assert eidas_level_for([{"method": "qes", "status": "pending"}]) == EidasLevel.SIMPLE


def test_document_sealer_stores_a_new_artifact(storage, clock):
    original = make_pdf()
    key = storage.put(original, {"envelope_id": "env-1", "filename": "contract.pdf"})
    document = SimpleNamespace(id="doc-1", envelope_id="env-1", filename="contract.pdf", storage_key=key)
    fields = [SimpleNamespace(
        id="name", type="text", page=1, x=5, y=5, width=20, height=5, value="Alice", signer_id="s1",
    )]

    result = DocumentSealer(storage, clock=clock).seal_document(document, fields)

    assert result.sealed_key != key
    assert storage.get(key) == original
    stored = storage.get(result.sealed_key)
    assert hash_document(stored) == result.sealed_hash
    assert result.sealed_at == clock()
    assert result.fields_rendered == 1
    assert verify_sealed_document(stored).document_hash == result.merge_hash
