from __future__ import annotations

import hashlib

import pytest

from exposure_chain.domain.hashing import (
    HashPurpose,
    chain_hash,
    contact_hash,
    hash_for,
    notification_doc_id,
    notification_hash,
    report_hash,
)


class TestDomainSeparation:
    def test_purposes_produce_distinct_identifiers(self) -> None:
        uid = "user-123"
        ids = {contact_hash(uid), notification_hash(uid), report_hash(uid), hash_for(HashPurpose.CHAIN, uid)}
        assert len(ids) == 4

    def test_contact_hash_is_unprefixed_sha256(self) -> None:
        assert contact_hash("abc") == hashlib.sha256(b"abc").hexdigest()

    def test_prefixes_match_wire_format(self) -> None:
        assert notification_hash("abc") == hashlib.sha256(b"notification:abc").hexdigest()
        assert report_hash("abc") == hashlib.sha256(b"report:abc").hexdigest()
        assert chain_hash("abc") == hashlib.sha256(b"chain:abc").hexdigest()

    def test_chain_hash_takes_contact_id(self) -> None:
        cid = contact_hash("alice")
        assert chain_hash(cid) == hashlib.sha256(f"chain:{cid}".encode()).hexdigest()
        assert chain_hash(cid) != contact_hash("alice")

    @pytest.mark.parametrize("purpose", list(HashPurpose))
    def test_deterministic(self, purpose: HashPurpose) -> None:
        assert hash_for(purpose, "same") == hash_for(purpose, "same")
        assert len(hash_for(purpose, "same")) == 64


class TestNotificationDocId:
    def test_one_id_per_report_and_recipient(self) -> None:
        assert notification_doc_id("r1", "n1") == notification_doc_id("r1", "n1")
        assert notification_doc_id("r1", "n1") != notification_doc_id("r2", "n1")
        assert notification_doc_id("r1", "n1") != notification_doc_id("r1", "n2")
