"""Domain-separated pseudonymous identifiers.

The same user gets unrelated-looking identifiers in each relation so that
collections cannot be joined on a shared id. Contact identifiers carry no
prefix: devices hash the raw uid the same way when recording contacts.
"""

from __future__ import annotations

import hashlib
from enum import Enum


class HashPurpose(str, Enum):
    CONTACT = "contact"
    NOTIFICATION = "notification"
    CHAIN = "chain"
    REPORT = "report"


_PREFIXES: dict[HashPurpose, str] = {
    HashPurpose.CONTACT: "",
    HashPurpose.NOTIFICATION: "notification:",
    HashPurpose.CHAIN: "chain:",
    HashPurpose.REPORT: "report:",
}


def hash_for(purpose: HashPurpose, raw_id: str) -> str:
    prefix = _PREFIXES[HashPurpose(purpose)]
    return hashlib.sha256(f"{prefix}{raw_id}".encode("utf-8")).hexdigest()


def contact_hash(uid: str) -> str:
    return hash_for(HashPurpose.CONTACT, uid)


def notification_hash(uid: str) -> str:
    return hash_for(HashPurpose.NOTIFICATION, uid)


def chain_hash(contact_id: str) -> str:
    # Chain paths hash the contact-relation id, not the raw uid.
    return hash_for(HashPurpose.CHAIN, contact_id)


def report_hash(uid: str) -> str:
    return hash_for(HashPurpose.REPORT, uid)


def notification_doc_id(report_id: str, recipient_id: str) -> str:
    """Deterministic notification id: one document per (report, recipient)."""
    return hashlib.sha256(f"{report_id}:{recipient_id}".encode("utf-8")).hexdigest()
