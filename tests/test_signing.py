from __future__ import annotations

import hmac
import json
from hashlib import sha256

from webhook_service.domain.enums import EventType
from webhook_service.domain.webhooks import (
    DeletionProof,
    DeletionSummary,
    DeliveryPayload,
    PayloadData,
)
from webhook_service.signing import canonical_body, sign, sign_body, verify_signature


def _registered_payload() -> DeliveryPayload:
    return DeliveryPayload(
        event=EventType.DATA_REGISTERED,
        user_did="did:midnight:user123",
        timestamp=1767268800000,
        data=PayloadData(
            commitment_hash="commit123",
            data_type="profile",
            service_provider="acme",
            transaction_hash="tx123",
        ),
    )


def test_canonical_body_uses_fixed_wire_order_and_compact_json():
    body = canonical_body(_registered_payload())
    assert body == (
        b'{"event":"data_registered","userDID":"did:midnight:user123",'
        b'"timestamp":1767268800000,"data":{"commitmentHash":"commit123",'
        b'"dataType":"profile","serviceProvider":"acme","transactionHash":"tx123"}}'
    )


def test_canonical_body_omits_absent_fields_and_nests_deletion_details():
    payload = DeliveryPayload(
        event=EventType.DELETION_COMPLETED,
        user_did="did:midnight:u",
        timestamp=1,
        data=PayloadData(
            service_provider="acme",
            deletion_details=DeletionSummary(
                total_records=2,
                deleted_records=1,
                deletion_proofs=[
                    DeletionProof(commitment_hash="c1", proof_hash="p1", transaction_hash="t1")
                ],
            ),
        ),
    )
    decoded = json.loads(canonical_body(payload))
    assert list(decoded["data"]) == ["serviceProvider", "deletionDetails"]
    assert decoded["data"]["deletionDetails"] == {
        "totalRecords": 2,
        "deletedRecords": 1,
        "deletionProofs": [
            {"commitmentHash": "c1", "proofHash": "p1", "transactionHash": "t1"}
        ],
    }


def test_sign_matches_hmac_sha256_over_canonical_body():
    payload = _registered_payload()
    expected = "sha256=" + hmac.new(b"s3cret", canonical_body(payload), sha256).hexdigest()
    assert sign(payload, "s3cret") == expected
    assert sign_body(canonical_body(payload), "s3cret") == expected


def test_sign_is_deterministic_and_key_dependent():
    payload = _registered_payload()
    assert sign(payload, "a") == sign(payload, "a")
    assert sign(payload, "a") != sign(payload, "b")
    assert sign(payload, "a") == sign(_registered_payload(), "a")


def test_verify_signature():
    body = canonical_body(_registered_payload())
    header = sign_body(body, "s3cret")
    assert verify_signature("s3cret", body, header)
    assert not verify_signature("other", body, header)
    assert not verify_signature("s3cret", body + b" ", header)
    assert not verify_signature("s3cret", body, None)
    assert not verify_signature("s3cret", body, header.removeprefix("sha256="))
