# Copyright Thales 2025
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Upload intake, catalog query and removal on top of a BaseFileStore.

Example
-------
>>> svc = FileService(store, constraints)
>>> stored = await svc.upload(upload_file)
>>> files = await svc.list_files()
>>> await svc.delete(stored.public_id)
"""

import asyncio
import logging
from pathlib import PurePosixPath
from typing import Awaitable, Optional, TypeVar

from fastapi import UploadFile

from file_drop_backend.common.structures import UploadConstraints
from file_drop_backend.core.stores.files.base_file_store import BaseFileStore, FileStoreError, StoredFileNotFoundError
from file_drop_backend.core.stores.files.structures import StoredFile

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024
T = TypeVar("T")


class UploadValidationError(ValueError):
    """Raised when an upload is rejected before reaching the storage backend."""


class FileService:
    """Thin service routing validated uploads, listings and deletions to the file store."""

    def __init__(self, store: BaseFileStore, constraints: UploadConstraints):
        self.store = store
        self.constraints = constraints
        self._pending_cleanups: set[asyncio.Task] = set()

    async def upload(self, file: Optional[UploadFile]) -> StoredFile:
        """
        Validate one multipart file part and persist it.

        Every check runs before the store is called, so a rejected upload
        never leaves anything in the backend.

        Raises:
            UploadValidationError: missing file, disallowed type, or size over the limit.
            FileStoreError: the backend failed or timed out.
        """
        if file is None or not file.filename:
            raise UploadValidationError("No file received")

        original_name = _client_file_name(file.filename)
        content_type = file.content_type or "application/octet-stream"
        self._check_type(original_name, content_type)
        content = await self._read_bounded(file)

        logger.info(f"Uploading '{original_name}' ({len(content)} bytes, {content_type}) to namespace '{self.store.namespace}'")
        # Shielded: a thread-backed SDK call cannot be interrupted, so a timed out
        # upload is left to finish and then removed.
        upload = asyncio.ensure_future(self.store.store(content, original_name, content_type))
        try:
            return await self._with_timeout(asyncio.shield(upload), "upload")
        except (FileStoreError, asyncio.CancelledError):
            if not upload.done() or (not upload.cancelled() and upload.exception() is None):
                self._discard_when_done(upload)
            raise

    async def list_files(self, limit: Optional[int] = None) -> list[StoredFile]:
        page_size = self.constraints.list_page_size
        effective = page_size if limit is None else max(1, min(limit, page_size))
        return await self._with_timeout(self.store.list(effective), "listing")

    async def delete(self, public_id: str) -> None:
        await self._with_timeout(self.store.delete(public_id), "deletion")

    async def wait_pending_cleanups(self) -> None:
        """Wait until every abandoned upload has been removed from the backend."""
        while self._pending_cleanups:
            await asyncio.gather(*self._pending_cleanups, return_exceptions=True)

    def _discard_when_done(self, upload: "asyncio.Future[StoredFile]") -> None:
        cleanup = asyncio.ensure_future(self._discard(upload))
        self._pending_cleanups.add(cleanup)
        cleanup.add_done_callback(self._pending_cleanups.discard)

    async def _discard(self, upload: "asyncio.Future[StoredFile]") -> None:
        try:
            stored = await upload
        except Exception as e:
            logger.info(f"Abandoned upload failed on its own, nothing to remove: {e}")
            return
        try:
            await self.store.delete(stored.public_id)
            logger.warning(f"🧹 Removed '{stored.public_id}', stored after its upload was abandoned")
        except StoredFileNotFoundError:
            pass
        except FileStoreError as e:
            logger.error(f"❌ Could not remove abandoned upload '{stored.public_id}': {e}")

    def _check_type(self, file_name: str, content_type: str) -> None:
        allowed_extensions = {e.lower().lstrip(".") for e in self.constraints.allowed_extensions}
        if allowed_extensions:
            extension = PurePosixPath(file_name).suffix.lower().lstrip(".")
            if extension not in allowed_extensions:
                raise UploadValidationError(f"File type '.{extension}' is not allowed" if extension else "Files without extension are not allowed")

        allowed_types = {t.lower() for t in self.constraints.allowed_content_types}
        if allowed_types and content_type.split(";")[0].strip().lower() not in allowed_types:
            raise UploadValidationError(f"Content type '{content_type}' is not allowed")

    async def _read_bounded(self, file: UploadFile) -> bytes:
        limit = self.constraints.max_size_bytes
        chunks = []
        total = 0
        while True:
            chunk = await file.read(CHUNK_SIZE)
            if not chunk:
                break
            total += len(chunk)
            if limit is not None and total > limit:
                raise UploadValidationError(f"File exceeds the maximum size of {limit} bytes")
            chunks.append(chunk)
        return b"".join(chunks)

    async def _with_timeout(self, call: Awaitable[T], operation: str) -> T:
        timeout = self.constraints.backend_timeout_seconds
        try:
            return await asyncio.wait_for(call, timeout=timeout)
        except asyncio.TimeoutError as e:
            logger.error(f"⏱️ Storage backend {operation} timed out after {timeout}s")
            raise FileStoreError(f"Storage backend {operation} timed out after {timeout}s") from e


def _client_file_name(raw: str) -> str:
    # Some browsers send the full client path
    return PurePosixPath(raw.replace("\\", "/")).name or raw
