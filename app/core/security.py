import hashlib
import hmac
import uuid


def generate_id() -> str:
    """Opaque identifier for accounts, packages and ledger transactions."""
    return str(uuid.uuid4())


def sign_webhook_payload(payload: bytes, secret: str) -> str:
    return hmac.new(
        secret.encode("utf-8"),
        payload,
        hashlib.sha256,
    ).hexdigest()


def verify_webhook_hmac(payload: bytes, signature: str | None, secret: str) -> bool:
    """HMAC-SHA256 hex digest check used by Razorpay and the simulated gateway."""
    if not signature or not secret:
        return False
    expected = sign_webhook_payload(payload, secret)
    return hmac.compare_digest(expected, signature)
