"""Share links: tokenized, optionally expiring grants on a single document.

A share is usable while it is active and not past ``expires_at``. Expiry is
derived from the clock and never stored; revocation flips ``is_active`` and
is terminal. The token alone authorizes the shared view/download routes.
"""
import logging
from datetime import timedelta

from flask import Blueprint, current_app, jsonify
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError

from auth import login_required
from documents import get_owned_document, read_payload, send_payload
from errors import Forbidden, NotFound, require_valid
from models import db, PERMISSIONS, Share, User, utcnow
from utils import (
    audit, generate_share_token, is_valid_email, qr_data_url, request_data, share_url, text_field, whole_number,
)

logger = logging.getLogger(__name__)

shares_bp = Blueprint("shares", __name__, url_prefix="/api/documents")

MAX_EXPIRES_IN_DAYS = 365


def _clean_share_request(data):
    errors = []

    document_id = data.get("documentId")
    try:
        document_id = whole_number(document_id)
    except ValueError:
        errors.append("valid document ID is required")

    seen = len(errors)
    email = text_field(data, "email", errors).lower()
    if len(errors) == seen and not is_valid_email(email):
        errors.append("valid email is required")

    seen = len(errors)
    permission = text_field(data, "permissions", errors).lower() or "view"
    if len(errors) == seen and permission not in PERMISSIONS:
        errors.append("permissions must be 'view' or 'download'")

    expires_in = data.get("expiresIn")
    if expires_in in (None, ""):
        expires_in = None
    else:
        try:
            expires_in = whole_number(expires_in)
            if not 1 <= expires_in <= MAX_EXPIRES_IN_DAYS:
                raise ValueError(expires_in)
        except (TypeError, ValueError):
            errors.append(f"expiresIn must be a whole number of days between 1 and {MAX_EXPIRES_IN_DAYS}")

    require_valid(errors)
    return document_id, email, permission, expires_in


def _notify_recipient(share, doc, grantor):
    mailer = current_app.extensions["mailer"]
    expiry_line = f"Expires: {share.expires_at:%Y-%m-%d %H:%M} UTC" if share.expires_at else "This link does not expire."
    try:
        sent = mailer.send_message(share.shared_with_email, "share", {
            "title": doc.title,
            "shared_by": grantor.name,
            "url": share_url(share.token),
            "permission": share.permission,
            "expiry_line": expiry_line,
        })
    except Exception:
        logger.exception("Error sending share notification for share %s", share.id)
        return False
    if not sent:
        logger.warning("Share notification for share %s was not delivered", share.id)
    return sent


def _record_access(share, capability, now):
    try:
        share.access_count = (share.access_count or 0) + 1
        share.last_accessed = now
        db.session.commit()
        audit(share.shared_by_id, f"shared_{capability}", f"Share {share.id} accessed")
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.warning("Could not record access for share %s: %s", share.id, e)


def _owned_share(grantor, share_id):
    share = Share.query.filter_by(id=share_id, shared_by_id=grantor.id).first()
    if not share:
        raise NotFound("share not found")
    return share


# ==========================================================
# 🔗 SHARE OPERATIONS
# ==========================================================
def issue_share(grantor, data, now=None):
    document_id, email, permission, expires_in = _clean_share_request(data)
    doc = get_owned_document(grantor, document_id)
    now = now or utcnow()

    recipient = User.query.filter_by(email=email).first()
    share = Share(
        document_id=doc.id,
        shared_by_id=grantor.id,
        shared_with_email=email,
        shared_with_id=recipient.id if recipient else None,
        permission=permission,
        expires_at=now + timedelta(days=expires_in) if expires_in else None,
        is_active=True,
        access_count=0,
        token=generate_share_token(),
        created_at=now,
    )
    db.session.add(share)
    db.session.commit()
    logger.info("User %s shared document %s (share %s, %s)", grantor.id, doc.id, share.id, permission)
    audit(grantor.id, "share", f"Shared {doc.filename} with {email} ({permission})")

    _notify_recipient(share, doc, grantor)
    return share


def resolve_share(token, capability, now=None):
    """Look up a usable share for capability; returns (share, document, payload)."""
    now = now or utcnow()
    share = Share.query.filter_by(token=token).first() if token else None
    if not share or not share.is_usable(now) or share.document is None:
        raise NotFound("shared document not found or expired")
    if not share.allows(capability):
        raise Forbidden(f"{capability} permission not granted")

    doc = share.document
    data = read_payload(doc)
    _record_access(share, capability, now)
    return share, doc, data


def shares_by_grantor(grantor):
    shares = (
        Share.query.filter_by(shared_by_id=grantor.id)
        .order_by(Share.created_at.desc(), Share.id.desc())
        .all()
    )
    return [dict(s.to_dict(), shareToken=s.token, document=s.document.summary()) for s in shares]


def shares_for_recipient(user):
    shares = (
        Share.query.filter(or_(Share.shared_with_id == user.id, Share.shared_with_email == user.email))
        .order_by(Share.created_at.desc(), Share.id.desc())
        .all()
    )
    return [
        dict(
            s.to_dict(),
            shareToken=s.token,
            document=s.document.summary(),
            sharedBy={"name": s.shared_by.name, "email": s.shared_by.email},
        )
        for s in shares
    ]


def revoke_share(grantor, share_id):
    share = _owned_share(grantor, share_id)
    if share.is_active:
        share.is_active = False
        db.session.commit()
        logger.info("User %s revoked share %s", grantor.id, share.id)
        audit(grantor.id, "revoke_share", f"Revoked share {share.id}")
    return share


def share_qr(grantor, share_id):
    share = _owned_share(grantor, share_id)
    link = share_url(share.token)
    return {"link": link, "qr_image": qr_data_url(link)}


# ==========================================================
# 🔗 SHARING ROUTES
# ==========================================================
@shares_bp.route("/share", methods=["POST"])
@login_required
def create(user):
    share = issue_share(user, request_data())
    return jsonify({
        "message": "document shared",
        "shareToken": share.token,
        "shareUrl": share_url(share.token),
        "share": share.to_dict(),
    }), 201


@shares_bp.route("/shared")
@login_required
def index(user):
    return jsonify({"sharedByMe": shares_by_grantor(user), "sharedWithMe": shares_for_recipient(user)})


@shares_bp.route("/share/<int:share_id>", methods=["DELETE"])
@login_required
def revoke(user, share_id):
    revoke_share(user, share_id)
    return jsonify({"message": "share revoked"})


@shares_bp.route("/share/<int:share_id>/qr")
@login_required
def qr(user, share_id):
    return jsonify(share_qr(user, share_id))


@shares_bp.route("/shared/<share_token>/view")
def view_shared(share_token):
    _, doc, data = resolve_share(share_token, "view")
    return send_payload(doc, data, as_attachment=False)


@shares_bp.route("/shared/<share_token>/download")
def download_shared(share_token):
    _, doc, data = resolve_share(share_token, "download")
    return send_payload(doc, data, as_attachment=True)
