import hashlib
import hmac
from typing import Mapping, Optional


def _hexdigest(secret: str, body: bytes, algo: str) -> Optional[str]:
    try:
        return hmac.new(secret.encode("utf-8"), body, algo).hexdigest()
    except (ValueError, TypeError):
        # hashlib does not know the algorithm the header names
        return None


def verify_signature(raw_body: bytes, signature_header: Optional[str], secret: str) -> bool:
    """Check an "<algorithm>=<hexdigest>" header against the HMAC of the raw body.

    The algorithm comes from the header (GitHub sends sha1 in X-Hub-Signature and
    sha256 in X-Hub-Signature-256). A missing header compares against an empty
    digest, so it is rejected rather than raising.
    """
    method, _, their_digest = (signature_header or "sha1=").partition("=")
    algo = method.strip().lower()
    if algo not in hashlib.algorithms_available:
        return False
    our_digest = _hexdigest(secret, raw_body, algo)
    if our_digest is None:
        return False
    return hmac.compare_digest(our_digest.encode("ascii"), their_digest.encode("utf-8"))


def pick_signature_header(headers: Mapping[str, str]) -> Optional[str]:
    """Prefer the sha256 header when GitHub sends both."""
    return headers.get("x-hub-signature-256") or headers.get("x-hub-signature")


def sign(secret: str, body: bytes, algo: str = "sha1") -> str:
    return f"{algo}=" + hmac.new(secret.encode("utf-8"), body, getattr(hashlib, algo)).hexdigest()
