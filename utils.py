import os
import io
import re
import base64
import secrets
import logging
from datetime import datetime, date, timezone

import qrcode
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from flask import current_app, request
from sqlalchemy.exc import SQLAlchemyError

from errors import InvalidInput
from models import db, AuditLog, utcnow

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


# ==========================================================
# 🔐 ENCRYPTION / DECRYPTION
# ==========================================================
def load_encryption_key(key_b64):
    """Decode a base64 AES key; returns None when no key is configured."""
    if not key_b64:
        return None
    key = base64.b64decode(key_b64)
    if len(key) not in (16, 24, 32):
        raise RuntimeError("ENCRYPTION_KEY must decode to a 128, 192 or 256-bit key")
    return key


def encrypt_bytes(data: bytes, key: bytes):
    """Encrypt file bytes using AES-GCM. Returns (nonce_b64, ciphertext)."""
    aesgcm = AESGCM(key)
    nonce = os.urandom(12)  # 96-bit nonce
    return base64.b64encode(nonce).decode(), aesgcm.encrypt(nonce, data, None)


def decrypt_bytes(nonce_b64: str, ciphertext: bytes, key: bytes) -> bytes:
    """Decrypt file bytes using AES-GCM."""
    aesgcm = AESGCM(key)
    return aesgcm.decrypt(base64.b64decode(nonce_b64), ciphertext, None)


# ==========================================================
# 🧾 AUDIT LOGGING
# ==========================================================
def audit(user_id: int, action: str, detail: str = ""):
    """Log user actions (uploads, deletions, shares, shared access).

    Runs after the action itself has been committed, so a failure here is
    logged and rolled back instead of failing the request.
    """
    try:
        entry = AuditLog(user_id=user_id, action=action, detail=detail[:1000], timestamp=utcnow())
        db.session.add(entry)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.warning("Could not write audit entry %r for user %s: %s", action, user_id, e)
        return False
    return True


# ==========================================================
# 🔑 TOKENS & CODES
# ==========================================================
def generate_otp():
    return f"{secrets.randbelow(10 ** 6):06d}"


def generate_share_token():
    return secrets.token_urlsafe(32)


def share_url(token):
    return f"{current_app.config['FRONTEND_URL'].rstrip('/')}/shared/{token}"


def qr_data_url(link):
    """PNG QR code for link, as a data URL."""
    img = qrcode.make(link)
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode("utf-8")


# ==========================================================
# ✅ INPUT HELPERS
# ==========================================================
def allowed(filename):
    """Checks if file extension is allowed."""
    return "." in filename and filename.rsplit(".", 1)[1].lower() in current_app.config["ALLOWED_EXT"]


def allowed_mimetype(filename, mimetype):
    """Checks the declared MIME type against the ones accepted for the extension."""
    ext = filename.rsplit(".", 1)[-1].lower()
    return (mimetype or "").lower() in current_app.config["ALLOWED_MIME"].get(ext, ())


def request_data():
    """JSON object body, or form fields when the request has no JSON."""
    data = request.get_json(silent=True)
    if data is None:
        return request.form
    if not isinstance(data, dict):
        raise InvalidInput("expected a JSON object")
    return data


def text_field(data, name, errors):
    """Stripped string value of data[name]; '' when absent or of the wrong type."""
    value = data.get(name)
    if value is None:
        return ""
    if not isinstance(value, str):
        errors.append(f"{name} must be a string")
        return ""
    return value.strip()


def whole_number(value):
    """int from an int, an integral float or a digit string; ValueError otherwise."""
    if isinstance(value, bool):
        raise ValueError(value)
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError(value)
        return int(value)
    if isinstance(value, (int, str)):
        return int(value)
    raise ValueError(value)


def is_valid_email(value):
    return bool(value) and bool(EMAIL_RE.match(value))


def normalize_email(value):
    return value.strip().lower() if isinstance(value, str) else ""


def parse_date(value):
    return date.fromisoformat(value) if value else None


def parse_datetime(value):
    """ISO datetime to naive UTC; naive input is taken as UTC already."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def parse_tags(value):
    if value is None:
        return None
    if isinstance(value, str):
        value = value.split(",")
    if not isinstance(value, (list, tuple)) or not all(isinstance(t, str) for t in value):
        raise ValueError("tags must be a list of strings or a comma-separated string")
    return [t.strip() for t in value if t.strip()]
