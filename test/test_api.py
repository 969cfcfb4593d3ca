from sealdesk import __version__
from test.config import SIGNER_A, SIGNER_B
from test.utils import pdf_base64, signature_data_url, signature_field


def _payload(**extra):
    payload = {
        "subject": "Master services agreement",
        "signers": [SIGNER_A, SIGNER_B],
        "documents": [{
            "filename": "agreement.pdf",
            "content_base64": pdf_base64(),
            "fields": [signature_field("sig-0", 0), signature_field("sig-1", 1)],
        }],
    }
    payload.update(extra)
    return payload


def _create_and_send(client):
    response = client.post("/envelopes", json=_payload())
    assert response.status_code == 201
    envelope_id = response.json()["id"]
    response = client.post(f"/envelopes/{envelope_id}/send")
    assert response.status_code == 200
    return response.json()


def test_health_check(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "version": __version__}


def test_create_envelope(client):
    response = client.post("/envelopes", json=_payload())

    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "draft"
    assert [s["email"] for s in data["signers"]] == [SIGNER_A["email"], SIGNER_B["email"]]
    assert "signing_token" not in data["signers"][0]
    assert len(data["documents"][0]["document_hash"]) == 64
    assert {f["field_key"] for f in data["documents"][0]["fields"]} == {"sig-0", "sig-1"}


def test_field_ids_can_be_reused_across_envelopes(client):
    first = client.post("/envelopes", json=_payload())
    second = client.post("/envelopes", json=_payload())
    assert (first.status_code, second.status_code) == (201, 201)

    payload = _payload()
    payload["documents"][0]["fields"].append(signature_field("sig-0", 1))
    repeated = client.post("/envelopes", json=payload)
    assert repeated.status_code == 422
    assert repeated.json()["details"]["errors"][0]["field_ids"] == ["sig-0"]


def test_create_rejects_unknown_signer_index(client):
    payload = _payload()
    payload["documents"][0]["fields"].append(signature_field("sig-9", 5))
    response = client.post("/envelopes", json=payload)
    assert response.status_code == 422


def test_full_signing_flow(client, notifier):
    envelope = _create_and_send(client)
    envelope_id = envelope["id"]
    assert envelope["status"] == "sent"

    alice_token = notifier.notified[0][1]
    session = client.get(f"/sign/{alice_token}")
    assert session.status_code == 200
    assert session.json()["can_sign"] is True
    assert [f["id"] for f in session.json()["fields"]] == ["sig-0"]

    consent = client.post(f"/sign/{alice_token}/consent", json={"ip_address": "10.0.0.1"})
    assert consent.status_code == 200

    signed = client.post(f"/sign/{alice_token}", json={"field_values": {"sig-0": signature_data_url()}})
    assert signed.status_code == 200
    assert signed.json()["envelope_status"] == "in_progress"

    bob_token = notifier.notified[-1][1]
    signed = client.post(f"/sign/{bob_token}", json={"field_values": {"sig-1": signature_data_url()}})
    assert signed.json()["is_complete"] is True

    envelope = client.get(f"/envelopes/{envelope_id}").json()
    assert envelope["status"] == "completed"
    document_id = envelope["documents"][0]["id"]

    download = client.get(f"/envelopes/{envelope_id}/documents/{document_id}/sealed")
    assert download.status_code == 200
    assert download.headers["content-type"] == "application/pdf"
    assert download.content.startswith(b"%PDF")

    verification = client.get(f"/envelopes/{envelope_id}/documents/{document_id}/verify").json()
    assert verification["valid"] is True

    integrity = client.get(f"/audit/envelopes/{envelope_id}/integrity").json()
    assert integrity["chain_intact"] is True
    assert integrity["total_events"] >= 8

    counts = client.get(f"/audit/envelopes/{envelope_id}/counts").json()
    assert counts["signed"] == 2
    assert counts["completed"] == 1


def test_error_shape_for_state_conflict(client, notifier):
    envelope = _create_and_send(client)
    response = client.post(f"/envelopes/{envelope['id']}/send")

    assert response.status_code == 409
    body = response.json()
    assert set(body) == {"error", "details"}
    assert body["details"]["status"] == "sent"
    assert body["details"]["allowed_statuses"] == ["draft"]


def test_unknown_envelope(client):
    response = client.get("/envelopes/does-not-exist")
    assert response.status_code == 404
    assert response.json()["details"] == {"entity": "envelope", "envelope_id": "does-not-exist"}


def test_used_token_is_unauthorized(client, notifier):
    _create_and_send(client)
    token = notifier.notified[0][1]
    client.post(f"/sign/{token}", json={"field_values": {"sig-0": signature_data_url()}})

    response = client.post(f"/sign/{token}", json={"field_values": {"sig-0": signature_data_url()}})
    assert response.status_code == 401


def test_field_validation_errors(client, notifier):
    _create_and_send(client)
    token = notifier.notified[0][1]

    response = client.post(f"/sign/{token}", json={"field_values": {"sig-1": "x"}})

    assert response.status_code == 422
    errors = response.json()["details"]["errors"]
    assert errors == {
        "sig-1": ["Field does not belong to this signer"],
        "sig-0": ["This field is required"],
    }


def test_decline_and_void(client, notifier):
    envelope = _create_and_send(client)
    token = notifier.notified[0][1]

    response = client.post(f"/sign/{token}/decline", json={"reason": "Wrong entity"})

    assert response.status_code == 200
    assert response.json()["envelope_status"] == "voided"
    again = client.post(f"/envelopes/{envelope['id']}/void", json={"reason": "cleanup"})
    assert again.status_code == 409


def test_two_factor_over_http(client, notifier):
    envelope = _create_and_send(client)
    alice_id = envelope["signers"][0]["id"]

    challenge = client.post(f"/identity/signers/{alice_id}/two-factor")
    assert challenge.status_code == 200
    assert challenge.json()["sms_sent"] is True

    response = client.post(f"/identity/signers/{alice_id}/two-factor/complete", json={
        "email_code": notifier.email_codes[SIGNER_A["email"]],
        "sms_code": notifier.sms_codes[SIGNER_A["phone"]],
    })
    assert response.status_code == 200
    assert response.json()["verified"] is True

    verifications = client.get(f"/identity/signers/{alice_id}/verifications").json()
    assert [v["status"] for v in verifications] == ["verified"]


def test_audit_event_types(client):
    types = {t["value"]: t for t in client.get("/audit/event-types").json()}
    assert types["field_filled"]["label"] == "Field Filled"
    assert types["signed"]["description"]
