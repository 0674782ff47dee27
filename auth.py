import logging
from datetime import timedelta
from functools import wraps

import jwt
from flask import Blueprint, current_app, g, jsonify, request
from sqlalchemy import or_
from werkzeug.security import generate_password_hash, check_password_hash

from errors import Conflict, InvalidInput, NotFound, Unauthorized, require_valid
from models import db, User, utcnow
from utils import generate_otp, is_valid_email, normalize_email, request_data, text_field

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")

IMMUTABLE_PROFILE_FIELDS = ("email", "nationalId")
MIN_PASSWORD_LENGTH = 6


# ==========================================================
# 🔒 PASSWORDS & SESSION TOKENS
# ==========================================================
def hash_password(secret):
    return generate_password_hash(secret)


def verify_password(secret, digest):
    return isinstance(secret, str) and check_password_hash(digest, secret)


def issue_token(user):
    now = utcnow()
    payload = {
        "sub": str(user.id),
        "iat": now,
        "exp": now + timedelta(days=current_app.config["JWT_EXPIRES_DAYS"]),
    }
    return jwt.encode(payload, current_app.config["JWT_SECRET"], algorithm="HS256")


def authenticate_request(header):
    """Resolve the verified User behind an ``Authorization: Bearer`` header."""
    if not header or not header.startswith("Bearer "):
        raise Unauthorized("access token required")
    token = header[len("Bearer "):].strip()
    try:
        payload = jwt.decode(token, current_app.config["JWT_SECRET"], algorithms=["HS256"])
        user_id = int(payload["sub"])
    except (jwt.InvalidTokenError, KeyError, ValueError):
        raise Unauthorized("invalid or expired token")

    user = db.session.get(User, user_id)
    if not user or not user.is_verified:
        raise Unauthorized("invalid or expired token")
    return user


def login_required(func):
    """Ensures routes carry a valid bearer token; passes the User first."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        user = authenticate_request(request.headers.get("Authorization"))
        g.current_user = user
        return func(user, *args, **kwargs)
    return wrapper


# ==========================================================
# 👤 ACCOUNT OPERATIONS
# ==========================================================
def _issue_otp(user):
    user.otp = generate_otp()
    user.otp_expires = utcnow() + timedelta(minutes=current_app.config["OTP_TTL_MINUTES"])


def _send_otp(user):
    mailer = current_app.extensions["mailer"]
    sent = mailer.send_message(user.email, "otp", {
        "otp": user.otp,
        "ttl_minutes": current_app.config["OTP_TTL_MINUTES"],
    })
    if not sent:
        logger.warning("OTP email could not be delivered to %s", user.email)
    return sent


def _check_password(password, errors):
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        errors.append(f"password must be at least {MIN_PASSWORD_LENGTH} characters")


def register(name, email, password, phone=None, national_id=None):
    errors = []
    fields = {"name": name, "email": email, "phone": phone, "nationalId": national_id}
    name = text_field(fields, "name", errors)
    email = text_field(fields, "email", errors).lower()
    phone = text_field(fields, "phone", errors)
    national_id = text_field(fields, "nationalId", errors) or None

    if not name:
        errors.append("name is required")
    elif len(name) > 120:
        errors.append("name must be at most 120 characters")
    if not is_valid_email(email):
        errors.append("valid email is required")
    _check_password(password, errors)
    if len(phone) > 30:
        errors.append("phone must be at most 30 characters")
    require_valid(errors)

    clauses = [User.email == email]
    if national_id:
        clauses.append(User.national_id == national_id)
    if User.query.filter(or_(*clauses)).first():
        raise Conflict("user already exists with this email or national id")

    user = User(
        name=name,
        email=email,
        phone=phone or None,
        national_id=national_id,
        password_hash=hash_password(password),
        is_verified=False,
    )
    _issue_otp(user)
    db.session.add(user)
    db.session.commit()
    logger.info("Registered user %s", user.id)

    _send_otp(user)
    return user


def resend_otp(email):
    user = User.query.filter_by(email=normalize_email(email)).first()
    if not user:
        raise NotFound("user not found")
    if user.is_verified:
        raise InvalidInput("account already verified")
    _issue_otp(user)
    db.session.commit()
    _send_otp(user)
    return user


def verify_otp(email, otp):
    user = User.query.filter_by(email=normalize_email(email)).first()
    if not user:
        raise NotFound("user not found")
    if not otp or user.otp != str(otp).strip() or not user.otp_expires or user.otp_expires < utcnow():
        raise InvalidInput("invalid or expired OTP")

    user.is_verified = True
    user.otp = None
    user.otp_expires = None
    user.last_login = utcnow()
    db.session.commit()
    return user, issue_token(user)


def login(email, password):
    user = User.query.filter_by(email=normalize_email(email)).first()
    if not user or not verify_password(password, user.password_hash):
        logger.warning("Failed login for %s", normalize_email(email))
        raise Unauthorized("invalid credentials")
    if not user.is_verified:
        raise Unauthorized("account not verified, please verify your email")

    user.last_login = utcnow()
    db.session.commit()
    return user, issue_token(user)


def update_profile(user, data):
    """Apply name / phone / password changes; email and national ID are fixed."""
    errors = [f"{field} cannot be changed" for field in IMMUTABLE_PROFILE_FIELDS if field in data]
    name = phone = None
    if data.get("name") is not None:
        name = text_field(data, "name", errors)
        if isinstance(data["name"], str) and not name:
            errors.append("name cannot be empty")
        elif len(name) > 120:
            errors.append("name must be at most 120 characters")
    if data.get("phone") is not None:
        phone = text_field(data, "phone", errors)
    password = data.get("password")
    if phone and len(phone) > 30:
        errors.append("phone must be at most 30 characters")
    if password is not None:
        _check_password(password, errors)
    require_valid(errors)

    if name:
        user.name = name
    if phone is not None:
        user.phone = phone or None
    if password is not None:
        user.password_hash = hash_password(password)
        logger.info("User %s changed their password", user.id)
    db.session.commit()
    return user


# ==========================================================
# 🚪 AUTHENTICATION ROUTES
# ==========================================================
@auth_bp.route("/register", methods=["POST"])
def register_route():
    data = request_data()
    user = register(
        data.get("name"),
        data.get("email"),
        data.get("password"),
        phone=data.get("phone"),
        national_id=data.get("nationalId"),
    )
    return jsonify({
        "message": "registered, please verify your email with the OTP sent",
        "email": user.email,
    }), 201


@auth_bp.route("/resend-otp", methods=["POST"])
def resend_otp_route():
    resend_otp(request_data().get("email"))
    return jsonify({"message": "a new OTP has been sent"})


@auth_bp.route("/verify-otp", methods=["POST"])
def verify_otp_route():
    data = request_data()
    user, token = verify_otp(data.get("email"), data.get("otp"))
    return jsonify({"message": "account verified", "token": token, "user": user.to_dict()})


@auth_bp.route("/login", methods=["POST"])
def login_route():
    data = request_data()
    user, token = login(data.get("email"), data.get("password"))
    return jsonify({"message": "logged in", "token": token, "user": user.to_dict()})


@auth_bp.route("/me")
@login_required
def me(user):
    return jsonify({"user": user.to_dict()})


@auth_bp.route("/profile", methods=["PUT"])
@login_required
def profile(user):
    update_profile(user, request_data())
    return jsonify({"message": "profile updated", "user": user.to_dict()})
