# Overview: Attachment storage backends; store bytes and hand back a retrievable URL.

from __future__ import annotations

import os
import uuid
from dataclasses import dataclass

from flask import current_app, send_from_directory
from werkzeug.utils import secure_filename


STORAGE_EXTENSION_KEY = "catering.storage"


@dataclass(frozen=True)
class StoredFile:
    key: str
    url: str
    size: int


class LocalFileStorage:
    """
    Stores uploads on local disk under upload_dir, served from url_prefix.

    Any object with the same save/delete/url_for/send methods (e.g. a cloud
    bucket client wrapper) can be registered in its place.
    """

    def __init__(self, upload_dir: str, url_prefix: str = "/uploads"):
        self.upload_dir = os.path.abspath(upload_dir)
        self.url_prefix = url_prefix.rstrip("/")

    def _path(self, key: str) -> str:
        return os.path.join(self.upload_dir, key)

    def url_for(self, key: str) -> str:
        return f"{self.url_prefix}/{key}"

    def save(self, *, file_name: str, content: bytes, content_type: str) -> StoredFile:
        os.makedirs(self.upload_dir, exist_ok=True)
        safe_name = secure_filename(file_name) or "upload"
        key = f"{uuid.uuid4().hex}_{safe_name}"
        with open(self._path(key), "wb") as fh:
            fh.write(content)
        return StoredFile(key=key, url=self.url_for(key), size=len(content))

    def send(self, key: str, *, download_name: str, mimetype: str):
        """Flask response streaming the stored bytes (404 when the file is gone)."""
        return send_from_directory(self.upload_dir, key, mimetype=mimetype, download_name=download_name)

    def delete(self, key: str) -> None:
        try:
            os.remove(self._path(key))
        except FileNotFoundError:
            pass


def get_storage():
    return current_app.extensions[STORAGE_EXTENSION_KEY]
