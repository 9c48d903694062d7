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


import asyncio
import json
import logging
import mimetypes
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Optional

import aiofiles

from file_drop_backend.core.stores.files.base_file_store import (
    BaseFileStore,
    FileStoreError,
    StoredFileNotFoundError,
    generate_public_id,
)
from file_drop_backend.core.stores.files.structures import StoredFile, resource_type_for

logger = logging.getLogger(__name__)

META_DIR = ".meta"


class LocalFileStore(BaseFileStore):
    """
    Local filesystem store.
    Blobs live under {root}/{namespace}/{public_id}, with a JSON sidecar under
    {root}/{namespace}/.meta/{public_id}.json keeping the original name and type.
    """

    def __init__(self, destination_root: Path, namespace: str, public_url_prefix: str = "/files"):
        self.namespace = namespace.strip("/")
        self.destination_root = Path(destination_root).expanduser().absolute()
        self.public_url_prefix = public_url_prefix.rstrip("/")
        self.namespace_dir.mkdir(parents=True, exist_ok=True)
        (self.namespace_dir / META_DIR).mkdir(exist_ok=True)

    @property
    def namespace_dir(self) -> Path:
        return self.destination_root / self.namespace

    async def store(self, content: bytes, original_name: str, content_type: str = "application/octet-stream") -> StoredFile:
        public_id = generate_public_id(original_name)
        blob = self._blob_path(public_id)

        try:
            # 'x' mode: an existing blob is never overwritten
            async with aiofiles.open(blob, "xb") as f:
                await f.write(content)
        except FileExistsError as e:
            raise FileStoreError(f"Public id collision for '{original_name}', retry the upload") from e
        except asyncio.CancelledError:
            self._rollback(public_id)
            raise
        except OSError as e:
            logger.error(f"❌ Failed to write '{blob}': {e}")
            blob.unlink(missing_ok=True)
            raise FileStoreError(f"Local write failed for '{original_name}': {e}") from e

        record = StoredFile(
            public_id=public_id,
            original_name=original_name,
            url=self._url(public_id),
            size_bytes=len(content),
            content_type=content_type,
            resource_type=resource_type_for(content_type),
            created_at=datetime.now(timezone.utc),
        )
        try:
            async with aiofiles.open(self._meta_path(public_id), "w", encoding="utf-8") as f:
                await f.write(record.model_dump_json(exclude={"url", "public_id"}))
        except asyncio.CancelledError:
            self._rollback(public_id)
            raise
        except OSError as e:
            logger.error(f"❌ Failed to write metadata for '{public_id}', rolling back: {e}")
            self._rollback(public_id)
            raise FileStoreError(f"Local metadata write failed for '{original_name}': {e}") from e

        logger.info(f"💾 Stored '{original_name}' as '{blob}'.")
        return record

    async def list(self, limit: int) -> list[StoredFile]:
        try:
            blobs = sorted(p for p in self.namespace_dir.iterdir() if p.is_file() and not p.name.startswith("."))
        except OSError as e:
            logger.error(f"❌ Failed to list '{self.namespace_dir}': {e}")
            raise FileStoreError(f"Local listing failed: {e}") from e

        items: list[StoredFile] = []
        for blob in blobs:
            if len(items) >= limit:
                break
            record = await self._load_record(blob)
            if record is not None:
                items.append(record)
        return items

    async def delete(self, public_id: str) -> None:
        if not _is_plain_id(public_id):
            raise StoredFileNotFoundError(public_id)
        blob = self._blob_path(public_id)
        try:
            # unlink is the arbitration point: among concurrent deletes, only one succeeds
            blob.unlink()
        except FileNotFoundError:
            raise StoredFileNotFoundError(public_id)
        except OSError as e:
            logger.error(f"❌ Failed to delete '{blob}': {e}")
            raise FileStoreError(f"Local delete failed for '{public_id}': {e}") from e
        self._meta_path(public_id).unlink(missing_ok=True)
        logger.info(f"🗑️ Deleted '{blob}'.")

    def _blob_path(self, public_id: str) -> Path:
        return self.namespace_dir / public_id

    def _meta_path(self, public_id: str) -> Path:
        return self.namespace_dir / META_DIR / f"{public_id}.json"

    def _url(self, public_id: str) -> str:
        return f"{self.public_url_prefix}/{public_id}"

    async def _load_record(self, blob: Path) -> Optional[StoredFile]:
        public_id = blob.name
        try:
            async with aiofiles.open(self._meta_path(public_id), "r", encoding="utf-8") as f:
                meta = json.loads(await f.read())
        except FileNotFoundError:
            # blob dropped in the folder by hand, or sidecar already deleted
            meta = {}
        except (OSError, ValueError) as e:
            logger.warning(f"Unreadable metadata for '{public_id}': {e}")
            meta = {}

        if not meta:
            try:
                st = blob.stat()
            except FileNotFoundError:
                return None  # deleted while listing
            guessed, _ = mimetypes.guess_type(public_id)
            meta = {
                "original_name": public_id,
                "size_bytes": st.st_size,
                "content_type": guessed,
                "resource_type": resource_type_for(guessed),
                "created_at": datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
            }
        return StoredFile(public_id=public_id, url=self._url(public_id), **meta)

    def _rollback(self, public_id: str) -> None:
        try:
            self._blob_path(public_id).unlink(missing_ok=True)
            self._meta_path(public_id).unlink(missing_ok=True)
        except OSError:
            logger.exception(f"Failed to roll back upload, orphaned file: {public_id}")


def _is_plain_id(public_id: str) -> bool:
    return bool(public_id) and "\\" not in public_id and PurePosixPath(public_id).name == public_id and not public_id.startswith(".")
