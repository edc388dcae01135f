"""
Content Store
=============
Where screenshots go.  ``upload()`` takes a job id, a route label and the
image bytes and returns a stable URL for the artifact.

Implementations:
    - ``LocalContentStore``  writes under a directory (CLI default)
    - ``HttpContentStore``   PUTs to a Supabase-storage compatible bucket
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional, Protocol

import requests

from .errors import UploadError
from .urls import slugify

logger = logging.getLogger(__name__)


class ContentStore(Protocol):

    async def upload(self, job_id: str, label: str, data: bytes, content_type: str = "image/png") -> str: ...


def _object_name(job_id: str, label: str, content_type: str) -> str:
    ext = "png" if content_type == "image/png" else content_type.rsplit("/", 1)[-1]
    return f"{job_id}/{slugify(label) or 'screen'}.{ext}"


class LocalContentStore:
    """Filesystem store.  Returns ``public_base_url/<object>`` or a file URI."""

    def __init__(self, root: str = "artifacts", public_base_url: Optional[str] = None):
        self.root = Path(root)
        self.public_base_url = public_base_url.rstrip("/") if public_base_url else None

    async def upload(self, job_id: str, label: str, data: bytes, content_type: str = "image/png") -> str:
        name = _object_name(job_id, label, content_type)
        path = self.root / name
        loop = asyncio.get_event_loop()

        def _write():
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)

        try:
            await loop.run_in_executor(None, _write)
        except OSError as exc:
            raise UploadError(f"Could not write {path}: {exc}") from exc
        if self.public_base_url:
            return f"{self.public_base_url}/{name}"
        return path.resolve().as_uri()


class HttpContentStore:
    """Upload to ``{base_url}/storage/v1/object/{bucket}/{path}``."""

    def __init__(self, base_url: str, api_key: str, bucket: str = "screenshots", timeout: int = 30):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.bucket = bucket
        self.timeout = timeout

    def public_url(self, name: str) -> str:
        return f"{self.base_url}/storage/v1/object/public/{self.bucket}/{name}"

    async def upload(self, job_id: str, label: str, data: bytes, content_type: str = "image/png") -> str:
        name = _object_name(job_id, label, content_type)
        loop = asyncio.get_event_loop()

        def _sync_upload():
            return requests.post(
                f"{self.base_url}/storage/v1/object/{self.bucket}/{name}",
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "apikey": self.api_key,
                    "Content-Type": content_type,
                    "x-upsert": "true",
                },
                data=data,
                timeout=self.timeout,
            )

        try:
            response = await loop.run_in_executor(None, _sync_upload)
        except requests.RequestException as exc:
            raise UploadError(f"Upload of {name} failed: {exc}") from exc
        if response.status_code >= 400:
            raise UploadError(f"Upload of {name} returned HTTP {response.status_code}")
        return self.public_url(name)
