import os
from datetime import datetime, timedelta, timezone

import jwt

from config import TestingConfig
from models import db, Document, Share, User, utcnow

# ----------------------------
# 🧪 BLACK BOX TESTS
# ----------------------------
'''Test Case: User should be able to register and receive an OTP by email.'''
def test_signup_success(client, mailer):
    response = client.post("/api/auth/register", json={"name": "Alice", "email": "A@X.com", "password": "secret1"})
    assert response.status_code == 201
    assert response.get_json()["email"] == "a@x.com"
    assert mailer.outbox[-1]["template"] == "otp"
    assert len(mailer.outbox[-1]["data"]["otp"]) == 6


'''Test Case: Signing up with an already registered email should fail and create nothing.'''
def test_signup_existing_email(app, client):
    client.post("/api/auth/register", json={"name": "Alice", "email": "a@x.com", "password": "secret1"})
    response = client.post("/api/auth/register", json={"name": "Other", "email": "a@x.com", "password": "abcdef"})
    assert response.status_code == 409
    assert b"exists" in response.data
    with app.app_context():
        assert User.query.count() == 1


'''Test Case: Validation reports every violation at once.'''
def test_signup_reports_all_errors(client):
    response = client.post("/api/auth/register", json={"name": "", "email": "nope", "password": "123"})
    assert response.status_code == 400
    assert len(response.get_json()["errors"]) == 3


'''Test Case: Login with the right password but an unverified account issues no token.'''
def test_login_unverified(client):
    client.post("/api/auth/register", json={"name": "Alice", "email": "a@x.com", "password": "secret1"})
    response = client.post("/api/auth/login", json={"email": "a@x.com", "password": "secret1"})
    assert response.status_code == 401
    assert "token" not in response.get_json()


def test_verify_otp_failures(client):
    client.post("/api/auth/register", json={"name": "Alice", "email": "a@x.com", "password": "secret1"})
    assert client.post("/api/auth/verify-otp", json={"email": "a@x.com", "otp": "abcdef"}).status_code == 400
    assert client.post("/api/auth/verify-otp", json={"email": "z@x.com", "otp": "123456"}).status_code == 404


def test_resend_otp_replaces_code(client, mailer):
    client.post("/api/auth/register", json={"name": "Alice", "email": "a@x.com", "password": "secret1"})
    first = mailer.outbox[-1]["data"]["otp"]
    assert client.post("/api/auth/resend-otp", json={"email": "a@x.com"}).status_code == 200
    second = mailer.outbox[-1]["data"]["otp"]
    assert len(mailer.outbox) == 2
    if first != second:
        assert client.post("/api/auth/verify-otp", json={"email": "a@x.com", "otp": first}).status_code == 400
    assert client.post("/api/auth/verify-otp", json={"email": "a@x.com", "otp": second}).status_code == 200


'''Test Case: User should be able to log in with correct credentials.'''
def test_login_success(client, register_user):
    register_user()
    response = client.post("/api/auth/login", json={"email": "a@x.com", "password": "secret1"})
    assert response.status_code == 200
    body = response.get_json()
    assert body["token"]
    assert body["user"]["lastLogin"]


'''Test Case: Login should fail if user provides wrong credentials'''
def test_login_invalid(client, register_user):
    register_user()
    response = client.post("/api/auth/login", json={"email": "a@x.com", "password": "wrong"})
    assert response.status_code == 401
    assert b"invalid credentials" in response.data


def test_protected_routes_need_token(client):
    assert client.get("/api/auth/me").status_code == 401
    assert client.get("/api/documents", headers={"Authorization": "Bearer garbage"}).status_code == 401


def test_profile_update(client, register_user):
    headers = register_user()
    response = client.put("/api/auth/profile", json={"name": "Alice B", "phone": "555"}, headers=headers)
    assert response.status_code == 200
    assert response.get_json()["user"]["name"] == "Alice B"

    response = client.put("/api/auth/profile", json={"email": "new@x.com"}, headers=headers)
    assert response.status_code == 400
    assert client.get("/api/auth/me", headers=headers).get_json()["user"]["email"] == "a@x.com"


'''Test Case: Uploading without a file should return an error.'''
def test_upload_without_file(client, register_user):
    headers = register_user()
    response = client.post("/api/documents/upload", data={"category": "government"}, headers=headers)
    assert response.status_code == 400
    assert b"no file" in response.data


def test_upload_rejects_bad_category_and_type(client, register_user, upload):
    headers = register_user()
    response = upload(headers, filename="malware.exe", category="space")
    assert response.status_code == 400
    errors = response.get_json()["errors"]
    assert len(errors) == 2


def test_upload_download_roundtrip(client, register_user, upload):
    headers = register_user()
    payload = b"%PDF-1.4\n" + os.urandom(2048)
    response = upload(headers, data=payload, tags="id, travel")
    assert response.status_code == 201
    doc = response.get_json()["document"]
    assert doc["size"] == len(payload)
    assert doc["tags"] == ["id", "travel"]

    response = client.get(f"/api/documents/{doc['id']}/download", headers=headers)
    assert response.status_code == 200
    assert response.data == payload
    assert response.mimetype == "application/pdf"
    assert "attachment" in response.headers["Content-Disposition"]


def test_list_search_and_filter(client, register_user, upload):
    headers = register_user()
    upload(headers, title="Passport", category="government")
    upload(headers, title="Blood test", category="healthcare", description="annual checkup")
    upload(headers, title="Bus pass", category="transport")

    body = client.get("/api/documents?limit=2", headers=headers).get_json()
    assert body["pagination"] == {"current": 1, "pages": 2, "total": 3, "limit": 2}
    assert [d["title"] for d in body["documents"]] == ["Bus pass", "Blood test"]

    body = client.get("/api/documents?search=CHECKUP", headers=headers).get_json()
    assert [d["title"] for d in body["documents"]] == ["Blood test"]

    body = client.get("/api/documents?category=government", headers=headers).get_json()
    assert [d["title"] for d in body["documents"]] == ["Passport"]

    assert client.get("/api/documents?page=zero", headers=headers).status_code == 400


def test_other_users_cannot_touch_documents(client, register_user, upload):
    alice = register_user("a@x.com", "Alice")
    bob = register_user("b@x.com", "Bob")
    doc_id = upload(alice).get_json()["document"]["id"]

    assert client.get(f"/api/documents/{doc_id}", headers=bob).status_code == 404
    assert client.put(f"/api/documents/{doc_id}", json={"title": "x"}, headers=bob).status_code == 404
    assert client.get(f"/api/documents/{doc_id}/download", headers=bob).status_code == 404
    assert client.delete(f"/api/documents/{doc_id}", headers=bob).status_code == 404
    assert client.get(f"/api/documents/{doc_id}", headers=alice).status_code == 200


def test_update_document(client, register_user, upload):
    headers = register_user()
    doc_id = upload(headers).get_json()["document"]["id"]
    response = client.put(f"/api/documents/{doc_id}", json={"title": "Renewed passport", "tags": ["id"]}, headers=headers)
    assert response.status_code == 200
    doc = response.get_json()["document"]
    assert doc["title"] == "Renewed passport"
    assert doc["category"] == "government"
    assert doc["tags"] == ["id"]

    response = client.put(f"/api/documents/{doc_id}", json={"category": "nope"}, headers=headers)
    assert response.status_code == 400


def test_delete_removes_shares(app, client, register_user, upload):
    headers = register_user()
    doc_id = upload(headers).get_json()["document"]["id"]
    token = client.post("/api/documents/share", json={"documentId": doc_id, "email": "b@x.com"}, headers=headers).get_json()["shareToken"]

    assert client.delete(f"/api/documents/{doc_id}", headers=headers).status_code == 200
    assert client.get(f"/api/documents/shared/{token}/view").status_code == 404
    with app.app_context():
        assert Share.query.count() == 0


def test_dashboard_and_categories(client, register_user, upload):
    headers = register_user()
    first = upload(headers, title="Passport", category="government").get_json()["document"]["id"]
    upload(headers, title="Degree", category="education")
    upload(headers, title="Licence", category="government")
    client.post("/api/documents/share", json={"documentId": first, "email": "b@x.com"}, headers=headers)

    stats = client.get("/api/documents/dashboard", headers=headers).get_json()
    assert stats["totalDocuments"] == 3
    assert stats["sharedDocuments"] == 1
    assert stats["categories"] == {"government": 2, "education": 1}
    assert stats["recentDocuments"][0]["title"] == "Licence"

    cats = client.get("/api/documents/categories", headers=headers).get_json()
    assert cats["categories"] == ["education", "government"]
    assert "finance" in cats["available"]


def test_expiring_and_export(client, register_user, upload):
    headers = register_user()
    assert client.get("/api/documents/export", headers=headers).status_code == 404
    upload(headers, title="Passport", expiryDate="2000-01-01")
    upload(headers, title="Degree", category="education")

    body = client.get("/api/documents/expiring", headers=headers).get_json()
    assert [d["title"] for d in body["documents"]] == ["Passport"]

    response = client.get("/api/documents/export", headers=headers)
    assert response.status_code == 200
    assert response.mimetype == "text/plain"
    assert b"Passport" in response.data and b"Degree" in response.data


'''Test Case: Full share lifecycle over HTTP.'''
def test_share_scenario(client, mailer, register_user, upload):
    headers = register_user("a@x.com", "Alice", "secret1")
    payload = b"%PDF-1.4\n" + os.urandom(50 * 1024)
    response = upload(headers, data=payload, title="Passport", category="government")
    doc_id = response.get_json()["document"]["id"]

    response = client.post("/api/documents/share", json={
        "documentId": doc_id, "email": "b@x.com", "permissions": "view", "expiresIn": 7,
    }, headers=headers)
    assert response.status_code == 201
    body = response.get_json()
    token = body["shareToken"]
    share_id = body["share"]["id"]
    assert body["share"]["expiresAt"]
    assert mailer.outbox[-1]["template"] == "share"
    assert token in mailer.outbox[-1]["body"]

    response = client.get(f"/api/documents/shared/{token}/view")
    assert response.status_code == 200
    assert response.data == payload
    assert "inline" in response.headers["Content-Disposition"]
    shared = client.get("/api/documents/shared", headers=headers).get_json()
    assert shared["sharedByMe"][0]["accessCount"] == 1

    assert client.get(f"/api/documents/shared/{token}/download").status_code == 403

    assert client.delete(f"/api/documents/share/{share_id}", headers=headers).status_code == 200
    assert client.get(f"/api/documents/shared/{token}/view").status_code == 404


def test_shared_with_me_listing(client, register_user, upload):
    alice = register_user("a@x.com", "Alice")
    bob = register_user("b@x.com", "Bob")
    doc_id = upload(alice).get_json()["document"]["id"]
    client.post("/api/documents/share", json={"documentId": doc_id, "email": "B@x.com", "permissions": "download"}, headers=alice)

    shared = client.get("/api/documents/shared", headers=bob).get_json()
    assert shared["sharedByMe"] == []
    assert shared["sharedWithMe"][0]["sharedBy"]["name"] == "Alice"
    assert shared["sharedWithMe"][0]["document"]["title"] == "Passport"

    token = shared["sharedWithMe"][0]["shareToken"]
    assert client.get(f"/api/documents/shared/{token}/download").status_code == 200


def test_share_validation_and_ownership(client, register_user, upload):
    alice = register_user("a@x.com", "Alice")
    bob = register_user("b@x.com", "Bob")
    doc_id = upload(alice).get_json()["document"]["id"]

    response = client.post("/api/documents/share", json={"documentId": "x", "email": "bad", "permissions": "edit", "expiresIn": 0}, headers=alice)
    assert response.status_code == 400
    assert len(response.get_json()["errors"]) == 4

    response = client.post("/api/documents/share", json={"documentId": doc_id, "email": "c@x.com"}, headers=bob)
    assert response.status_code == 404


def test_share_qr(client, register_user, upload):
    headers = register_user()
    doc_id = upload(headers).get_json()["document"]["id"]
    share_id = client.post("/api/documents/share", json={"documentId": doc_id, "email": "b@x.com"}, headers=headers).get_json()["share"]["id"]
    body = client.get(f"/api/documents/share/{share_id}/qr", headers=headers).get_json()
    assert body["qr_image"].startswith("data:image/png;base64,")
    assert body["link"].startswith("http://localhost:3000/shared/")


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.get_json()["status"] == "OK"
    assert response.headers["Access-Control-Allow-Origin"] == "http://localhost:3000"


'''Test Case: Fields of the wrong JSON type are reported as validation errors.'''
def test_signup_rejects_non_string_fields(client):
    response = client.post("/api/auth/register", json={"name": "Alice", "email": 123, "password": 123456})
    assert response.status_code == 400
    errors = response.get_json()["errors"]
    assert "email must be a string" in errors
    assert "password must be at least 6 characters" in errors

    response = client.post("/api/auth/register", json=["a@x.com"])
    assert response.status_code == 400
    assert response.get_json()["error"] == "expected a JSON object"


def test_login_with_non_string_credentials(client, register_user):
    register_user()
    response = client.post("/api/auth/login", json={"email": ["a@x.com"], "password": 5})
    assert response.status_code == 401


'''Test Case: An expired session token is refused.'''
def test_expired_token_is_rejected(client, register_user):
    headers = register_user()
    user_id = client.get("/api/auth/me", headers=headers).get_json()["user"]["id"]

    past = datetime.now(timezone.utc) - timedelta(hours=1)
    token = jwt.encode(
        {"sub": str(user_id), "iat": past - timedelta(days=30), "exp": past},
        TestingConfig.JWT_SECRET, algorithm="HS256",
    )
    response = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401
    assert b"expired" in response.data


'''Test Case: A correct OTP past its expiry does not verify the account.'''
def test_expired_otp_is_rejected(app, client, mailer):
    client.post("/api/auth/register", json={"name": "Alice", "email": "a@x.com", "password": "secret1"})
    otp = mailer.outbox[-1]["data"]["otp"]
    with app.app_context():
        user = User.query.filter_by(email="a@x.com").first()
        user.otp_expires = utcnow() - timedelta(minutes=1)
        db.session.commit()

    response = client.post("/api/auth/verify-otp", json={"email": "a@x.com", "otp": otp})
    assert response.status_code == 400
    with app.app_context():
        assert User.query.filter_by(email="a@x.com").first().is_verified is False


'''Test Case: A user can change their password through the profile.'''
def test_profile_password_change(client, register_user):
    headers = register_user(password="secret1")
    response = client.put("/api/auth/profile", json={"password": "123"}, headers=headers)
    assert response.status_code == 400
    assert "password must be at least 6 characters" in response.get_json()["errors"]

    response = client.put("/api/auth/profile", json={"password": "n3w-secret"}, headers=headers)
    assert response.status_code == 200

    assert client.post("/api/auth/login", json={"email": "a@x.com", "password": "secret1"}).status_code == 401
    assert client.post("/api/auth/login", json={"email": "a@x.com", "password": "n3w-secret"}).status_code == 200


def test_profile_rejects_non_string_fields(client, register_user):
    headers = register_user()
    response = client.put("/api/auth/profile", json={"name": 7, "phone": ["555"]}, headers=headers)
    assert response.status_code == 400
    assert response.get_json()["errors"] == ["name must be a string", "phone must be a string"]
    assert client.get("/api/auth/me", headers=headers).get_json()["user"]["name"] == "Alice"


'''Test Case: An upload whose content type does not match its extension is refused.'''
def test_upload_rejects_mismatched_content_type(app, client, register_user, upload):
    headers = register_user()
    response = upload(headers, filename="invoice.pdf", mimetype="application/x-msdownload")
    assert response.status_code == 400
    assert "does not match" in response.get_json()["errors"][0]

    assert upload(headers, filename="scan.png", mimetype="image/png").status_code == 201
    with app.app_context():
        assert Document.query.count() == 1


def test_update_rejects_wrong_field_types(client, register_user, upload):
    headers = register_user()
    doc_id = upload(headers).get_json()["document"]["id"]

    response = client.put(f"/api/documents/{doc_id}", json={"title": 5, "tags": 7}, headers=headers)
    assert response.status_code == 400
    errors = response.get_json()["errors"]
    assert len(errors) == 2
    assert "title must be a string" in errors

    response = client.put(f"/api/documents/{doc_id}", json=["title"], headers=headers)
    assert response.status_code == 400
    assert client.get(f"/api/documents/{doc_id}", headers=headers).get_json()["document"]["title"] == "Passport"


def test_share_rejects_wrong_field_types(client, register_user, upload):
    headers = register_user()
    doc_id = upload(headers).get_json()["document"]["id"]

    response = client.post("/api/documents/share", json={"documentId": doc_id, "email": ["b@x.com"]}, headers=headers)
    assert response.status_code == 400
    assert response.get_json()["errors"] == ["email must be a string"]

    for expires_in in (7.9, True, "7.9"):
        response = client.post("/api/documents/share", json={
            "documentId": doc_id, "email": "b@x.com", "expiresIn": expires_in,
        }, headers=headers)
        assert response.status_code == 400, expires_in

    response = client.post("/api/documents/share", json={"documentId": doc_id, "email": "b@x.com", "expiresIn": 7.0}, headers=headers)
    assert response.status_code == 201

    response = client.post("/api/documents/share", json="b@x.com", headers=headers)
    assert response.status_code == 400
