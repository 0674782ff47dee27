import os
from dotenv import load_dotenv
load_dotenv()

BASE_DIR = os.path.abspath(os.path.dirname(__file__))


def _flag(name, default="false"):
    return (os.getenv(name) or default).lower() in ("1", "true", "yes")


class Config:
    APP_NAME = os.getenv("APP_NAME", "DigiDocs")
    SECRET_KEY = os.getenv("FLASK_SECRET_KEY", "dev-secret")
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL") or f"sqlite:///{os.path.join(BASE_DIR, 'app.db')}"
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Session credentials (HS256 JWT)
    JWT_SECRET = os.getenv("JWT_SECRET") or SECRET_KEY
    JWT_EXPIRES_DAYS = int(os.getenv("JWT_EXPIRES_DAYS") or 30)
    OTP_TTL_MINUTES = int(os.getenv("OTP_TTL_MINUTES") or 10)

    # Uploads
    MAX_CONTENT_LENGTH = int(os.getenv("MAX_CONTENT_LENGTH") or 10 * 1024 * 1024)
    ALLOWED_EXT = {"pdf", "doc", "docx", "jpg", "jpeg", "png", "gif"}
    ALLOWED_MIME = {
        "pdf": {"application/pdf"},
        "doc": {"application/msword"},
        "docx": {"application/vnd.openxmlformats-officedocument.wordprocessingml.document"},
        "jpg": {"image/jpeg"},
        "jpeg": {"image/jpeg"},
        "png": {"image/png"},
        "gif": {"image/gif"},
    }

    # Payload storage: disk | database | s3
    STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "disk")
    UPLOAD_FOLDER = os.getenv("UPLOAD_FOLDER") or os.path.join(BASE_DIR, "uploads")
    S3_BUCKET = os.getenv("S3_BUCKET")
    S3_REGION = os.getenv("S3_REGION", "us-east-1")
    S3_ENDPOINT_URL = os.getenv("S3_ENDPOINT_URL")
    AWS_ACCESS_KEY_ID = os.getenv("AWS_ACCESS_KEY_ID")
    AWS_SECRET_ACCESS_KEY = os.getenv("AWS_SECRET_ACCESS_KEY")

    # AES-256-GCM key in base64 (optional; payloads stored in clear without it)
    ENCRYPTION_KEY_B64 = os.getenv("ENCRYPTION_KEY")

    # SMTP (optional)
    SMTP_HOST = os.getenv("SMTP_HOST")
    SMTP_PORT = int(os.getenv("SMTP_PORT") or 587)
    SMTP_USER = os.getenv("SMTP_USER")
    SMTP_PASS = os.getenv("SMTP_PASS")
    FROM_EMAIL = os.getenv("FROM_EMAIL") or os.getenv("SMTP_USER") or "noreply@digidocs.local"
    MAIL_SUPPRESS_SEND = _flag("MAIL_SUPPRESS_SEND")

    # Share links and CORS
    FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")

    SCHEDULER_ENABLED = _flag("SCHEDULER_ENABLED", "true")


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    JWT_SECRET = "test-jwt-secret-0123456789abcdef0123"
    STORAGE_BACKEND = "database"
    ENCRYPTION_KEY_B64 = None
    MAIL_SUPPRESS_SEND = True
    SCHEDULER_ENABLED = False
