"""
Attachment Gateway — where uploaded report files are stored.

Blueprints and services never touch the storage backend directly; they
call the gateway held in ``app.extensions["attachment_gateway"]``:

    store(stream, metadata) -> StoredFile(id, url, ...)
    get(id)                 -> StoredFile   (NotFoundError if unknown)
    delete(id)              -> None         (idempotent)

Backends (``ATTACHMENT_BACKEND``):
  - local   files under UPLOAD_FOLDER, metadata in a JSON sidecar,
            served back through GET /api/v1/integration/uploads/<id>
  - remote  HTTP object store at ATTACHMENT_REMOTE_URL (bearer token
            ATTACHMENT_REMOTE_TOKEN), retried on network errors

Backend failures surface as GatewayError (502 at the API boundary).

Testability: pass a mock ``session`` to HttpAttachmentGateway, or put any
object with the same three methods into ``app.extensions``.
"""

from __future__ import annotations

import json
import logging
import os
import re
import shutil
import time
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, BinaryIO

import requests
from flask import current_app

from portal.core.exceptions import GatewayError, NotFoundError

logger = logging.getLogger(__name__)

# ── Retry constants ────────────────────────────────────────────────────────
_RETRY_MAX = 2
_RETRY_BACKOFF_SECONDS = [1, 4]

_DEFAULT_TIMEOUT = 30

# uuid hex + lower-case extension; anything else is never a stored id
_LOCAL_ID = re.compile(r"^[0-9a-f]{32}(\.[a-z0-9]{1,10})?$")


@dataclass(frozen=True)
class StoredFile:
    """Gateway handle for a stored object."""

    id: str
    url: str
    name: str | None = None
    content_type: str | None = None
    size: int | None = None
    uploaded_at: str | None = None
    extra: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)


# ═══════════════════════════════════════════════════════════════
# Local filesystem backend
# ═══════════════════════════════════════════════════════════════
class LocalAttachmentGateway:
    """Stores files on local disk.

    Usage:
        gateway = LocalAttachmentGateway("/srv/uploads", "/api/v1/integration/uploads")
        stored = gateway.store(open(path, "rb"), {"name": "report.pdf"})
    """

    def __init__(self, root: str, url_prefix: str = "/api/v1/integration/uploads") -> None:
        self.root = root
        self.url_prefix = url_prefix.rstrip("/")
        os.makedirs(self.root, exist_ok=True)

    def _paths(self, file_id: str) -> tuple[str, str]:
        if not _LOCAL_ID.match(file_id or ""):
            raise NotFoundError("File", file_id)
        path = os.path.join(self.root, file_id)
        return path, path + ".json"

    def path_for(self, file_id: str) -> str:
        """Absolute path of a stored file (NotFoundError if missing)."""
        path, _ = self._paths(file_id)
        if not os.path.isfile(path):
            raise NotFoundError("File", file_id)
        return path

    def store(self, stream: BinaryIO, metadata: dict) -> StoredFile:
        name = metadata.get("name") or "upload"
        ext = os.path.splitext(name)[1].lower()
        file_id = uuid.uuid4().hex + (ext if re.fullmatch(r"\.[a-z0-9]{1,10}", ext) else "")
        path, meta_path = self._paths(file_id)

        try:
            with open(path, "wb") as out:
                shutil.copyfileobj(stream, out)
            size = os.path.getsize(path)
            record = {
                "name": name,
                "content_type": metadata.get("content_type"),
                "size": size,
                "uploaded_at": datetime.now(timezone.utc).isoformat(),
                "extra": {k: v for k, v in metadata.items()
                          if k not in ("name", "content_type", "size")},
            }
            with open(meta_path, "w", encoding="utf-8") as out:
                json.dump(record, out, default=str)
        except OSError as exc:
            for leftover in (path, meta_path):
                if os.path.exists(leftover):
                    os.remove(leftover)
            raise GatewayError(f"Local storage failed: {exc}") from exc

        logger.info("Stored attachment %s (%d bytes)", file_id, size)
        return StoredFile(id=file_id, url=f"{self.url_prefix}/{file_id}", **record)

    def get(self, file_id: str) -> StoredFile:
        path, meta_path = self._paths(file_id)
        if not os.path.isfile(path):
            raise NotFoundError("File", file_id)
        record: dict[str, Any] = {}
        if os.path.isfile(meta_path):
            with open(meta_path, encoding="utf-8") as fh:
                record = json.load(fh)
        return StoredFile(
            id=file_id,
            url=f"{self.url_prefix}/{file_id}",
            name=record.get("name"),
            content_type=record.get("content_type"),
            size=record.get("size", os.path.getsize(path)),
            uploaded_at=record.get("uploaded_at"),
            extra=record.get("extra") or {},
        )

    def delete(self, file_id: str) -> None:
        path, meta_path = self._paths(file_id)
        try:
            for target in (path, meta_path):
                if os.path.exists(target):
                    os.remove(target)
        except OSError as exc:
            raise GatewayError(f"Could not delete {file_id}: {exc}") from exc
        logger.info("Deleted attachment %s", file_id)


# ═══════════════════════════════════════════════════════════════
# Remote HTTP object store backend
# ═══════════════════════════════════════════════════════════════
class HttpAttachmentGateway:
    """Relays files to a remote object store over HTTP.

    Expected remote API:
        POST   {base}/files          multipart "file" + form "metadata" → {id, url, ...}
        GET    {base}/files/{id}     → {id, url, name, content_type, size, ...}
        DELETE {base}/files/{id}     → 2xx or 404
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout: int = _DEFAULT_TIMEOUT,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._session = session

    @property
    def session(self) -> requests.Session:
        """Return (or lazily create) the requests.Session."""
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def _headers(self) -> dict:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _request(self, method: str, path: str, *, rewind: BinaryIO | None = None, **kwargs) -> requests.Response:
        """Send with retries on network errors and 5xx; 4xx is returned as-is."""
        url = f"{self.base_url}{path}"
        last_error = "Unknown error"
        status = None
        for attempt in range(_RETRY_MAX + 1):
            if rewind is not None:
                rewind.seek(0)
            try:
                resp = self.session.request(
                    method, url, headers=self._headers(), timeout=self.timeout, **kwargs,
                )
                if resp.status_code < 500:
                    return resp
                status = resp.status_code
                last_error = f"HTTP {resp.status_code}: {resp.text[:500]}"
            except requests.Timeout:
                last_error = f"Request timed out after {self.timeout}s"
            except requests.RequestException as exc:
                last_error = str(exc)[:500]

            logger.warning(
                "Attachment store %s %s failed attempt=%d/%d: %s",
                method, url, attempt + 1, _RETRY_MAX + 1, last_error,
            )
            if attempt < _RETRY_MAX:
                time.sleep(_RETRY_BACKOFF_SECONDS[min(attempt, len(_RETRY_BACKOFF_SECONDS) - 1)])

        raise GatewayError(last_error, status_code=status)

    @staticmethod
    def _parse(resp: requests.Response, fallback_id: str | None = None) -> StoredFile:
        try:
            body = resp.json()
        except ValueError as exc:
            raise GatewayError("Attachment store returned invalid JSON", resp.status_code) from exc
        file_id = str(body.get("id") or fallback_id or "")
        if not file_id or not body.get("url"):
            raise GatewayError("Attachment store response missing id/url", resp.status_code)
        known = {"id", "url", "name", "content_type", "size", "uploaded_at"}
        return StoredFile(
            id=file_id,
            url=body["url"],
            name=body.get("name"),
            content_type=body.get("content_type"),
            size=body.get("size"),
            uploaded_at=body.get("uploaded_at"),
            extra={k: v for k, v in body.items() if k not in known},
        )

    def store(self, stream: BinaryIO, metadata: dict) -> StoredFile:
        name = metadata.get("name") or "upload"
        resp = self._request(
            "POST", "/files",
            rewind=stream,
            files={"file": (name, stream, metadata.get("content_type") or "application/octet-stream")},
            data={"metadata": json.dumps(metadata, default=str)},
        )
        if not resp.ok:
            raise GatewayError(f"Upload rejected: HTTP {resp.status_code}", resp.status_code)
        stored = self._parse(resp)
        logger.info("Stored attachment %s remotely", stored.id)
        return stored

    def get(self, file_id: str) -> StoredFile:
        resp = self._request("GET", f"/files/{file_id}")
        if resp.status_code == 404:
            raise NotFoundError("File", file_id)
        if not resp.ok:
            raise GatewayError(f"Lookup failed: HTTP {resp.status_code}", resp.status_code)
        return self._parse(resp, fallback_id=file_id)

    def delete(self, file_id: str) -> None:
        resp = self._request("DELETE", f"/files/{file_id}")
        if resp.status_code == 404:
            return
        if not resp.ok:
            raise GatewayError(f"Delete failed: HTTP {resp.status_code}", resp.status_code)
        logger.info("Deleted attachment %s remotely", file_id)


# ═══════════════════════════════════════════════════════════════
# App wiring
# ═══════════════════════════════════════════════════════════════
def init_attachment_gateway(app) -> None:
    """Build the configured backend and register it on the app."""
    backend = app.config.get("ATTACHMENT_BACKEND", "local")
    if backend == "remote":
        base_url = app.config.get("ATTACHMENT_REMOTE_URL")
        if not base_url:
            raise RuntimeError("ATTACHMENT_REMOTE_URL is required when ATTACHMENT_BACKEND=remote")
        gateway = HttpAttachmentGateway(
            base_url,
            token=app.config.get("ATTACHMENT_REMOTE_TOKEN"),
            timeout=app.config.get("ATTACHMENT_REMOTE_TIMEOUT", _DEFAULT_TIMEOUT),
        )
    elif backend == "local":
        gateway = LocalAttachmentGateway(app.config["UPLOAD_FOLDER"])
    else:
        raise RuntimeError(f"Unknown ATTACHMENT_BACKEND: {backend!r}")

    app.extensions["attachment_gateway"] = gateway
    app.logger.info("Attachment gateway: %s", type(gateway).__name__)


def get_attachment_gateway():
    return current_app.extensions["attachment_gateway"]
