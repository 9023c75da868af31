from __future__ import annotations

import hashlib
import re

_LONE_SURROGATE = re.compile("[\ud800-\udfff]")


def compute_bytes_digest(data: bytes, alg: str = "sha256") -> str:
    h = hashlib.new(alg)
    h.update(data)
    return h.hexdigest()


def normalize_text(text: str) -> str:
    """Canonical form used for fingerprinting, chunk planning and storage.

    Lone surrogates (left behind by broken text extraction) are not encodable as
    UTF-8 and are replaced with U+FFFD.
    """
    text = _LONE_SURROGATE.sub("\ufffd", text)
    return text.replace("\r\n", "\n").replace("\r", "\n").strip()


def fingerprint_text(text: str) -> str:
    return compute_bytes_digest(normalize_text(text).encode("utf-8"))


def fingerprint_pages(name: str, size_bytes: int) -> str:
    # Page images are fingerprinted by identity hint, not by pixels.
    safe_name = _LONE_SURROGATE.sub("\ufffd", name)
    return compute_bytes_digest(f"{safe_name}:{int(size_bytes)}".encode("utf-8"))
