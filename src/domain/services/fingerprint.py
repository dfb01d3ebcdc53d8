"""Content fingerprints for sends that arrive without a stamp id."""

import hashlib
import re
from collections.abc import Iterable

import orjson

from domain.entities.signal import SignalContent

_WHITESPACE = re.compile(r"\s+")


def _normalize_text(value: str | None) -> str:
    return _WHITESPACE.sub(" ", value or "").strip()


def _normalize_recipients(recipients: Iterable[str]) -> list[str]:
    return sorted({r.strip().lower() for r in recipients if r and r.strip()})


def content_fingerprint(
    subject: str | None,
    body: str | None,
    recipients: Iterable[str],
    sender: str | None = None,
    salt: str | None = None,
) -> str:
    """Hex sha256 over canonical JSON of the normalized content.

    Whitespace runs collapse, addresses are case-folded, and recipient order
    and repeats do not matter. A ``salt`` scopes the fingerprint to one send
    so identical content from separate sends never collides.
    """
    document = {
        "subject": _normalize_text(subject),
        "body": _normalize_text(body),
        "sender": (sender or "").strip().lower(),
        "recipients": _normalize_recipients(recipients),
    }
    if salt:
        document["salt"] = salt
    canonical = orjson.dumps(document, option=orjson.OPT_SORT_KEYS)
    return hashlib.sha256(canonical).hexdigest()


def fingerprint_for(content: SignalContent, salt: str | None = None) -> str:
    return content_fingerprint(
        content.subject,
        content.body,
        content.recipients,
        sender=content.sender,
        salt=salt,
    )
