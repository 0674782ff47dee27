import io

import pytest
from werkzeug.datastructures import FileStorage, MultiDict

from app import create_app
from auth import hash_password
from config import TestingConfig
from documents import upload_document
from models import db, User


@pytest.fixture
def app():
    """Fresh app on an in-memory SQLite database, in-DB payload storage, mail kept in an outbox."""
    app = create_app(TestingConfig)
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def mailer(app):
    return app.extensions["mailer"]


@pytest.fixture
def register_user(client, mailer):
    """Register and verify an account over HTTP; returns its auth headers."""
    def _register(email="a@x.com", name="Alice", password="secret1"):
        res = client.post("/api/auth/register", json={"name": name, "email": email, "password": password})
        assert res.status_code == 201
        otp = [m for m in mailer.outbox if m["to"] == email and m["template"] == "otp"][-1]["data"]["otp"]
        res = client.post("/api/auth/verify-otp", json={"email": email, "otp": otp})
        assert res.status_code == 200
        return {"Authorization": f"Bearer {res.get_json()['token']}"}
    return _register


@pytest.fixture
def upload(client):
    def _upload(headers, data=b"%PDF-1.4 test document", filename="passport.pdf", mimetype="application/pdf", **fields):
        form = {"title": "Passport", "category": "government"}
        form.update(fields)
        form["file"] = (io.BytesIO(data), filename, mimetype)
        return client.post("/api/documents/upload", data=form, headers=headers, content_type="multipart/form-data")
    return _upload


@pytest.fixture
def ctx(app):
    with app.app_context():
        yield app


@pytest.fixture
def make_user(ctx):
    def _make(email, name="User", verified=True):
        user = User(name=name, email=email, password_hash=hash_password("secret1"), is_verified=verified)
        db.session.add(user)
        db.session.commit()
        return user
    return _make


@pytest.fixture
def make_document(ctx):
    def _make(owner, data=b"%PDF-1.4 test document", filename="passport.pdf", **fields):
        form = {"title": "Passport", "category": "government"}
        form.update(fields)
        file = FileStorage(stream=io.BytesIO(data), filename=filename, content_type="application/pdf")
        return upload_document(owner, file, MultiDict(form))
    return _make
