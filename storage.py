"""Payload storage backends.

Every backend exposes the same three operations:

* ``put(data, content_type)`` stores bytes and returns an opaque reference,
* ``get(reference)`` returns the bytes (``PayloadMissing`` if they are gone),
* ``delete(reference)`` releases them (missing payloads are ignored).

The backend named by ``STORAGE_BACKEND`` is built once in ``init_storage`` and
kept in ``app.extensions["document_storage"]``.
"""
import os
import uuid
import logging

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from models import db, DocumentBlob

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """The storage backend failed to complete an operation."""


class PayloadMissing(StorageError):
    """The referenced payload does not exist in the backend."""


class DiskStorage:
    name = "disk"

    def __init__(self, folder):
        self.folder = folder

    def _path(self, reference):
        if os.path.basename(reference) != reference:
            raise PayloadMissing(f"invalid disk reference {reference!r}")
        return os.path.join(self.folder, reference)

    def put(self, data, content_type=None):
        os.makedirs(self.folder, exist_ok=True)
        stored_name = uuid.uuid4().hex + ".bin"
        try:
            with open(self._path(stored_name), "wb") as f:
                f.write(data)
        except OSError as e:
            raise StorageError(f"could not write {stored_name}: {e}") from e
        return stored_name

    def get(self, reference):
        try:
            with open(self._path(reference), "rb") as f:
                return f.read()
        except FileNotFoundError as e:
            raise PayloadMissing(f"{reference} not found on disk") from e
        except OSError as e:
            raise StorageError(f"could not read {reference}: {e}") from e

    def delete(self, reference):
        try:
            os.remove(self._path(reference))
        except FileNotFoundError:
            pass
        except OSError as e:
            raise StorageError(f"could not delete {reference}: {e}") from e


class DatabaseStorage:
    """Keeps payloads in the DocumentBlob table, inside the caller's transaction."""
    name = "database"

    def put(self, data, content_type=None):
        blob = DocumentBlob(data=data, content_type=content_type)
        try:
            db.session.add(blob)
            db.session.flush()
        except SQLAlchemyError as e:
            raise StorageError(f"could not store blob: {e}") from e
        return str(blob.id)

    def get(self, reference):
        try:
            blob = db.session.get(DocumentBlob, int(reference))
        except ValueError as e:
            raise PayloadMissing(f"invalid blob reference {reference!r}") from e
        except SQLAlchemyError as e:
            raise StorageError(f"could not read blob {reference}: {e}") from e
        if blob is None:
            raise PayloadMissing(f"blob {reference} not found")
        return blob.data

    def delete(self, reference):
        try:
            DocumentBlob.query.filter_by(id=int(reference)).delete()
        except ValueError:
            pass
        except SQLAlchemyError as e:
            raise StorageError(f"could not delete blob {reference}: {e}") from e


class S3Storage:
    name = "s3"

    def __init__(self, bucket, region=None, endpoint_url=None, access_key=None, secret_key=None, prefix="documents/"):
        if not bucket:
            raise RuntimeError("S3_BUCKET must be set when STORAGE_BACKEND is 's3'")
        self.bucket = bucket
        self.prefix = prefix
        self.client = boto3.client(
            "s3",
            region_name=region,
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
        )

    def put(self, data, content_type=None):
        key = self.prefix + uuid.uuid4().hex
        try:
            self.client.put_object(
                Bucket=self.bucket, Key=key, Body=data,
                ContentType=content_type or "application/octet-stream",
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"could not upload {key}: {e}") from e
        return key

    def get(self, reference):
        try:
            obj = self.client.get_object(Bucket=self.bucket, Key=reference)
            return obj["Body"].read()
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("NoSuchKey", "404", "NotFound"):
                raise PayloadMissing(f"{reference} not found in bucket {self.bucket}") from e
            raise StorageError(f"could not fetch {reference}: {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"could not fetch {reference}: {e}") from e

    def delete(self, reference):
        try:
            self.client.delete_object(Bucket=self.bucket, Key=reference)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"could not delete {reference}: {e}") from e


def create_storage(config):
    backend = (config.get("STORAGE_BACKEND") or "disk").lower()
    if backend == "disk":
        return DiskStorage(config["UPLOAD_FOLDER"])
    if backend == "database":
        return DatabaseStorage()
    if backend == "s3":
        return S3Storage(
            config.get("S3_BUCKET"),
            region=config.get("S3_REGION"),
            endpoint_url=config.get("S3_ENDPOINT_URL"),
            access_key=config.get("AWS_ACCESS_KEY_ID"),
            secret_key=config.get("AWS_SECRET_ACCESS_KEY"),
        )
    raise RuntimeError(f"unknown STORAGE_BACKEND {backend!r}")


def init_storage(app):
    app.extensions["document_storage"] = create_storage(app.config)
    logger.info("Document storage backend: %s", app.extensions["document_storage"].name)
    return app.extensions["document_storage"]


def get_storage():
    return current_app.extensions["document_storage"]
