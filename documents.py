import io
import math
import logging
from datetime import timedelta

from cryptography.exceptions import InvalidTag
from flask import Blueprint, current_app, jsonify, make_response, request, send_file
from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.utils import secure_filename

from auth import login_required
from errors import Internal, NotFound, require_valid
from models import db, CATEGORIES, Document, Share, utcnow
from storage import PayloadMissing, StorageError, get_storage
from utils import (
    allowed, allowed_mimetype, audit, decrypt_bytes, encrypt_bytes, parse_date, parse_datetime, parse_tags,
    request_data, text_field,
)

logger = logging.getLogger(__name__)

documents_bp = Blueprint("documents", __name__, url_prefix="/api/documents")

RECENT_LIMIT = 5
MAX_PAGE_SIZE = 100


# ==========================================================
# 🔒 HELPER FUNCTIONS
# ==========================================================
def _clean_metadata(data, partial=False):
    """Validate document metadata; returns (fields, errors)."""
    fields, errors = {}, []

    title = text_field(data, "title", errors)
    if title:
        if len(title) > 200:
            errors.append("title must be at most 200 characters")
        fields["title"] = title

    if "description" in data:
        description = text_field(data, "description", errors)
        if len(description) > 1000:
            errors.append("description must be at most 1000 characters")
        fields["description"] = description or None

    seen = len(errors)
    category = text_field(data, "category", errors).lower()
    if category:
        if category not in CATEGORIES:
            errors.append(f"invalid category, expected one of: {', '.join(CATEGORIES)}")
        fields["category"] = category
    elif not partial and len(errors) == seen:
        errors.append("category is required")

    if "tags" in data:
        tags = data.get("tags")
        if hasattr(data, "getlist") and len(data.getlist("tags")) > 1:
            tags = data.getlist("tags")
        try:
            fields["tags"] = parse_tags(tags) or []
        except ValueError as e:
            errors.append(str(e))

    if "expiryDate" in data:
        expiry = data.get("expiryDate")
        try:
            if expiry is not None and not isinstance(expiry, str):
                raise TypeError(expiry)
            fields["expiry_date"] = parse_date(expiry)
        except (TypeError, ValueError):
            errors.append("expiryDate must be an ISO date (YYYY-MM-DD)")

    if "reminderAt" in data:
        reminder = data.get("reminderAt")
        try:
            if reminder is not None and not isinstance(reminder, str):
                raise TypeError(reminder)
            fields["reminder_at"] = parse_datetime(reminder)
            fields["reminder_sent_at"] = None
        except (TypeError, ValueError):
            errors.append("reminderAt must be an ISO datetime")

    return fields, errors


def _positive_int(value, name, default, errors, maximum=None):
    if value in (None, ""):
        return default
    try:
        number = int(value)
    except (TypeError, ValueError):
        errors.append(f"{name} must be an integer")
        return default
    if number < 1:
        errors.append(f"{name} must be at least 1")
        return default
    return min(number, maximum) if maximum else number


def get_owned_document(owner, doc_id):
    """Owner-scoped lookup; absence and foreign ownership both read as NotFound."""
    doc = Document.query.filter_by(id=doc_id, owner_id=owner.id).first()
    if not doc:
        raise NotFound("document not found")
    return doc


def read_payload(doc):
    """Fetch (and decrypt) a document's bytes from the storage backend."""
    storage = get_storage()
    if doc.storage_backend != storage.name:
        logger.warning("Document %s lives in %s, active backend is %s", doc.id, doc.storage_backend, storage.name)
        raise NotFound("file not found on server")
    try:
        data = storage.get(doc.storage_ref)
    except PayloadMissing:
        logger.warning("Payload missing for document %s (%s)", doc.id, doc.storage_ref)
        raise NotFound("file not found on server")
    except StorageError as e:
        logger.error("Storage read failed for document %s: %s", doc.id, e)
        raise Internal("could not read document")

    if doc.is_encrypted:
        key = current_app.extensions.get("encryption_key")
        if not key:
            raise Internal("document is encrypted but no ENCRYPTION_KEY is configured")
        try:
            data = decrypt_bytes(doc.nonce_b64, data, key)
        except InvalidTag:
            logger.error("Payload for document %s failed authentication", doc.id)
            raise Internal("document payload is corrupt")
    return data


def send_payload(doc, data, as_attachment=True):
    return send_file(
        io.BytesIO(data),
        mimetype=doc.mime_type,
        as_attachment=as_attachment,
        download_name=doc.filename,
    )


def release_payload(doc):
    storage = get_storage()
    if doc.storage_backend != storage.name:
        logger.warning("Cannot release payload of document %s from inactive backend %s", doc.id, doc.storage_backend)
        return
    try:
        storage.delete(doc.storage_ref)
    except StorageError as e:
        logger.warning("Error deleting payload of document %s: %s", doc.id, e)


# ==========================================================
# 📁 DOCUMENT OPERATIONS
# ==========================================================
def upload_document(owner, file, form, upload_ip=None, user_agent=None):
    errors = []
    if file is None:
        errors.append("no file provided")
    elif not file.filename:
        errors.append("empty filename")
    elif not allowed(file.filename):
        errors.append("invalid file type, allowed: " + ", ".join(sorted(current_app.config["ALLOWED_EXT"])))
    elif not allowed_mimetype(file.filename, file.mimetype):
        errors.append(f"file content type {file.mimetype or 'unknown'} does not match its extension")
    fields, field_errors = _clean_metadata(form)
    require_valid(errors + field_errors)

    raw = file.read()
    filename = secure_filename(file.filename) or "document"
    mime_type = file.mimetype or "application/octet-stream"

    key = current_app.extensions.get("encryption_key")
    nonce_b64, payload = (encrypt_bytes(raw, key) if key else (None, raw))

    storage = get_storage()
    try:
        ref = storage.put(payload, mime_type)
    except StorageError as e:
        logger.error("Upload for user %s failed in storage: %s", owner.id, e)
        db.session.rollback()
        raise Internal("document upload failed")

    fields.setdefault("title", file.filename[:200])
    doc = Document(
        owner_id=owner.id,
        filename=filename,
        mime_type=mime_type,
        size=len(raw),
        storage_backend=storage.name,
        storage_ref=ref,
        is_encrypted=bool(key),
        nonce_b64=nonce_b64,
        upload_ip=upload_ip,
        user_agent=(user_agent or "")[:300] or None,
        **fields,
    )
    try:
        db.session.add(doc)
        db.session.commit()
    except SQLAlchemyError as e:
        logger.error("Upload for user %s failed saving metadata: %s", owner.id, e)
        db.session.rollback()
        try:
            storage.delete(ref)
        except StorageError:
            logger.exception("Could not remove orphaned payload %s", ref)
        raise Internal("document upload failed")

    logger.info("User %s uploaded document %s (%d bytes)", owner.id, doc.id, doc.size)
    audit(owner.id, "upload", f"Uploaded {doc.filename}")
    return doc


def list_documents(owner, page=None, limit=None, category=None, search=None):
    errors = []
    page = _positive_int(page, "page", 1, errors)
    limit = _positive_int(limit, "limit", 10, errors, maximum=MAX_PAGE_SIZE)
    category = (category or "").strip().lower()
    if category and category != "all" and category not in CATEGORIES:
        errors.append("invalid category")
    require_valid(errors)

    query = Document.query.filter_by(owner_id=owner.id)
    if category and category != "all":
        query = query.filter(Document.category == category)
    if search:
        query = query.filter(or_(
            Document.title.icontains(search, autoescape=True),
            Document.description.icontains(search, autoescape=True),
        ))

    total = query.count()
    documents = (
        query.order_by(Document.created_at.desc(), Document.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return documents, {"current": page, "pages": math.ceil(total / limit), "total": total, "limit": limit}


def update_document(owner, doc_id, data):
    doc = get_owned_document(owner, doc_id)
    fields, errors = _clean_metadata(data, partial=True)
    require_valid(errors)
    for name, value in fields.items():
        setattr(doc, name, value)
    db.session.commit()
    return doc


def delete_document(owner, doc_id):
    doc = get_owned_document(owner, doc_id)
    release_payload(doc)
    removed = Share.query.filter_by(document_id=doc.id).delete()
    db.session.delete(doc)
    db.session.commit()
    logger.info("User %s deleted document %s and %d share(s)", owner.id, doc_id, removed)
    audit(owner.id, "delete", f"Deleted {doc.filename}")


def dashboard_stats(owner):
    now = utcnow()
    total = Document.query.filter_by(owner_id=owner.id).count()
    recent = (
        Document.query.filter_by(owner_id=owner.id)
        .order_by(Document.created_at.desc(), Document.id.desc())
        .limit(RECENT_LIMIT)
        .all()
    )
    shared = Share.query.filter(
        Share.shared_by_id == owner.id,
        Share.is_active.is_(True),
        or_(Share.expires_at.is_(None), Share.expires_at > now),
    ).count()
    breakdown = (
        db.session.query(Document.category, func.count(Document.id))
        .filter(Document.owner_id == owner.id)
        .group_by(Document.category)
        .all()
    )
    return {
        "totalDocuments": total,
        "recentDocuments": [d.summary() for d in recent],
        "sharedDocuments": shared,
        "categories": {category: count for category, count in breakdown},
    }


def used_categories(owner):
    rows = (
        db.session.query(Document.category)
        .filter(Document.owner_id == owner.id)
        .distinct()
        .order_by(Document.category)
        .all()
    )
    return [row[0] for row in rows]


def expiring_documents(owner, days=7):
    today = utcnow().date()
    return (
        Document.query.filter(
            Document.owner_id == owner.id,
            Document.expiry_date.isnot(None),
            Document.expiry_date <= today + timedelta(days=days),
        )
        .order_by(Document.expiry_date)
        .all()
    )


def export_summary(owner):
    docs = Document.query.filter_by(owner_id=owner.id).order_by(Document.created_at).all()
    if not docs:
        raise NotFound("no documents to summarize")

    app_name = current_app.config["APP_NAME"]
    summary = [
        f"{app_name} - File Summary for {owner.email}",
        f"Generated on: {utcnow().strftime('%Y-%m-%d %H:%M:%S UTC')}",
        "",
    ]
    for doc in docs:
        summary.append(f"{doc.title} ({doc.filename})")
        summary.append(f"   - Category: {doc.category}")
        summary.append(f"   - Expiry: {doc.expiry_date or 'N/A'}")
        summary.append(f"   - Reminder: {doc.reminder_at or 'N/A'}")
        summary.append("")
    return "\n".join(summary)


# ==========================================================
# 📁 DOCUMENT MANAGEMENT ROUTES
# ==========================================================
@documents_bp.route("/upload", methods=["POST"])
@login_required
def upload(user):
    doc = upload_document(
        user,
        request.files.get("file"),
        request.form,
        upload_ip=request.remote_addr,
        user_agent=request.headers.get("User-Agent"),
    )
    return jsonify({"message": "document uploaded", "document": doc.to_dict()}), 201


@documents_bp.route("", methods=["GET"])
@documents_bp.route("/", methods=["GET"])
@login_required
def index(user):
    documents, pagination = list_documents(
        user,
        page=request.args.get("page"),
        limit=request.args.get("limit"),
        category=request.args.get("category"),
        search=request.args.get("search"),
    )
    return jsonify({"documents": [d.to_dict() for d in documents], "pagination": pagination})


@documents_bp.route("/dashboard")
@login_required
def dashboard(user):
    return jsonify(dashboard_stats(user))


@documents_bp.route("/categories")
@login_required
def categories(user):
    return jsonify({"categories": used_categories(user), "available": list(CATEGORIES)})


@documents_bp.route("/expiring")
@login_required
def expiring(user):
    errors = []
    days = _positive_int(request.args.get("days"), "days", 7, errors, maximum=365)
    require_valid(errors)
    return jsonify({"documents": [d.to_dict() for d in expiring_documents(user, days)], "days": days})


@documents_bp.route("/export")
@login_required
def export(user):
    response = make_response(export_summary(user))
    response.headers["Content-Disposition"] = "attachment; filename=file_summary.txt"
    response.mimetype = "text/plain"
    return response


@documents_bp.route("/<int:doc_id>", methods=["GET"])
@login_required
def show(user, doc_id):
    return jsonify({"document": get_owned_document(user, doc_id).to_dict()})


@documents_bp.route("/<int:doc_id>", methods=["PUT"])
@login_required
def update(user, doc_id):
    doc = update_document(user, doc_id, request_data())
    return jsonify({"message": "document updated", "document": doc.to_dict()})


@documents_bp.route("/<int:doc_id>", methods=["DELETE"])
@login_required
def destroy(user, doc_id):
    delete_document(user, doc_id)
    return jsonify({"message": "document deleted"})


@documents_bp.route("/<int:doc_id>/download")
@login_required
def download(user, doc_id):
    doc = get_owned_document(user, doc_id)
    return send_payload(doc, read_payload(doc), as_attachment=True)
