from flask_sqlalchemy import SQLAlchemy
from datetime import datetime, timezone

db = SQLAlchemy()

CATEGORIES = ("education", "healthcare", "government", "finance", "transport", "other")
PERMISSIONS = ("view", "download")


def utcnow():
    """Naive UTC timestamp, the form every DateTime column is stored in."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _iso(value):
    return value.isoformat() if value else None


class User(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(200), unique=True, nullable=False)
    phone = db.Column(db.String(30))
    national_id = db.Column(db.String(30), unique=True)
    password_hash = db.Column(db.String(300), nullable=False)
    is_verified = db.Column(db.Boolean, default=False, nullable=False)
    otp = db.Column(db.String(6))
    otp_expires = db.Column(db.DateTime)
    last_login = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "nationalId": self.national_id,
            "isVerified": self.is_verified,
            "lastLogin": _iso(self.last_login),
            "createdAt": _iso(self.created_at),
        }


class Document(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.String(1000))
    category = db.Column(db.String(20), nullable=False, index=True)
    tags = db.Column(db.JSON, default=list)
    filename = db.Column(db.String(300), nullable=False)          # original filename
    mime_type = db.Column(db.String(150), nullable=False)
    size = db.Column(db.Integer, nullable=False)
    storage_backend = db.Column(db.String(20), nullable=False)   # backend that holds the payload
    storage_ref = db.Column(db.String(500), nullable=False)      # backend-specific reference
    is_encrypted = db.Column(db.Boolean, default=False, nullable=False)
    nonce_b64 = db.Column(db.String(100))                         # encryption nonce
    upload_ip = db.Column(db.String(64))
    user_agent = db.Column(db.String(300))
    expiry_date = db.Column(db.Date)
    reminder_at = db.Column(db.DateTime)
    reminder_sent_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    owner = db.relationship("User", backref=db.backref("documents", lazy="dynamic"))

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "tags": self.tags or [],
            "originalName": self.filename,
            "mimeType": self.mime_type,
            "size": self.size,
            "isEncrypted": self.is_encrypted,
            "expiryDate": _iso(self.expiry_date),
            "reminderAt": _iso(self.reminder_at),
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }

    def summary(self):
        return {"id": self.id, "title": self.title, "category": self.category, "createdAt": _iso(self.created_at)}


class DocumentBlob(db.Model):
    """Payload bytes for the in-database storage backend."""
    id = db.Column(db.Integer, primary_key=True)
    data = db.Column(db.LargeBinary, nullable=False)
    content_type = db.Column(db.String(150))
    created_at = db.Column(db.DateTime, default=utcnow)


class Share(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    document_id = db.Column(db.Integer, db.ForeignKey("document.id"), nullable=False, index=True)
    shared_by_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)
    shared_with_email = db.Column(db.String(200), nullable=False, index=True)
    shared_with_id = db.Column(db.Integer, db.ForeignKey("user.id"))
    permission = db.Column(db.String(10), nullable=False, default="view")
    expires_at = db.Column(db.DateTime)     # None = never expires
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    access_count = db.Column(db.Integer, default=0, nullable=False)
    last_accessed = db.Column(db.DateTime)
    token = db.Column(db.String(64), unique=True, nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    document = db.relationship("Document")
    shared_by = db.relationship("User", foreign_keys=[shared_by_id])
    shared_with = db.relationship("User", foreign_keys=[shared_with_id])

    def is_expired(self, now=None):
        if self.expires_at is None:
            return False
        return (now or utcnow()) >= self.expires_at

    def is_usable(self, now=None):
        return bool(self.is_active) and not self.is_expired(now)

    def allows(self, capability):
        if capability == "view":
            return self.permission in PERMISSIONS
        return self.permission == capability

    def status(self, now=None):
        if not self.is_active:
            return "revoked"
        return "expired" if self.is_expired(now) else "active"

    def to_dict(self):
        return {
            "id": self.id,
            "documentId": self.document_id,
            "sharedWithEmail": self.shared_with_email,
            "permissions": self.permission,
            "expiresAt": _iso(self.expires_at),
            "isActive": self.is_active,
            "status": self.status(),
            "accessCount": self.access_count,
            "lastAccessed": _iso(self.last_accessed),
            "createdAt": _iso(self.created_at),
        }


class AuditLog(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer)
    action = db.Column(db.String(200))
    detail = db.Column(db.String(1000))
    timestamp = db.Column(db.DateTime, default=utcnow)
