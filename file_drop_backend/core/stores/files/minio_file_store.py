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
import logging
import weakref
from datetime import timedelta
from io import BytesIO
from typing import Optional
from urllib.parse import quote, unquote, urlparse

import urllib3
from anyio import to_thread
from minio import Minio
from minio.error import S3Error
from urllib3.exceptions import HTTPError

from file_drop_backend.core.stores.files.base_file_store import (
    BaseFileStore,
    FileStoreError,
    StoredFileNotFoundError,
    generate_public_id,
)
from file_drop_backend.core.stores.files.structures import StoredFile, resource_type_for

logger = logging.getLogger(__name__)

ORIGINAL_NAME_META = "original-name"
MISSING_OBJECT_CODES = {"NoSuchKey", "NoSuchObject", "ResourceNotFound"}


class MinioFileStore(BaseFileStore):
    """
    MinIO-backed upload store.
    Stores objects under `{namespace}/{public_id}` in a single bucket. The original
    file name travels as object user metadata (URL-quoted, S3 headers are ASCII only).
    The SDK is blocking, so every call runs in a worker thread.

    Deletes of the same object are serialized within this process, so only one of
    several concurrent callers sees success. S3 has no conditional delete: two
    processes deleting the same object at once can both succeed.
    """

    def __init__(
        self,
        endpoint: str,
        access_key: str,
        secret_key: str,
        bucket_name: str,
        secure: bool,
        namespace: str,
        public_base_url: Optional[str] = None,
        presigned_url_expiry: timedelta = timedelta(hours=24),
        request_timeout: Optional[float] = None,
    ):
        self.bucket_name = bucket_name
        self.namespace = namespace.strip("/")
        self.public_base_url = public_base_url.rstrip("/") if public_base_url else None
        self.presigned_url_expiry = presigned_url_expiry
        # One lock per object being deleted, dropped once no caller holds it
        self._delete_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

        parsed = urlparse(endpoint)
        if "://" in endpoint and parsed.path not in ("", "/"):
            raise RuntimeError(
                f"❌ Invalid MinIO endpoint: '{endpoint}'.\n"
                "👉 The endpoint must not include a path. Use only scheme://host:port.\n"
                "   Example: 'http://localhost:9000', NOT 'http://localhost:9000/minio'"
            )

        clean_endpoint = endpoint.replace("https://", "").replace("http://", "")

        try:
            self.client = Minio(
                clean_endpoint,
                access_key=access_key,
                secret_key=secret_key,
                secure=secure,
                http_client=_http_client(request_timeout) if request_timeout else None,
            )
        except ValueError as e:
            logger.error(f"❌ Failed to initialize MinIO client: {e}")
            raise

        # Ensure bucket exists (create if missing)
        if not self.client.bucket_exists(bucket_name):
            self.client.make_bucket(bucket_name)
            logger.info(f"✅ Bucket '{bucket_name}' created.")

    # -------- BaseFileStore interface --------

    async def store(self, content: bytes, original_name: str, content_type: str = "application/octet-stream") -> StoredFile:
        public_id = generate_public_id(original_name)
        object_name = self._object_name(public_id)

        def _put() -> None:
            self.client.put_object(
                self.bucket_name,
                object_name,
                data=BytesIO(content),
                length=len(content),
                content_type=content_type,
                metadata={ORIGINAL_NAME_META: quote(original_name)},
            )

        try:
            await to_thread.run_sync(_put)
            logger.info(f"📤 Uploaded '{object_name}' to bucket '{self.bucket_name}'")
        except (S3Error, HTTPError) as e:
            logger.error(f"❌ Failed to upload '{object_name}': {e}")
            raise FileStoreError(f"Upload failed for '{original_name}': {e}") from e

        return StoredFile(
            public_id=public_id,
            original_name=original_name,
            url=self._url(object_name),
            size_bytes=len(content),
            content_type=content_type,
            resource_type=resource_type_for(content_type),
        )

    async def list(self, limit: int) -> list[StoredFile]:
        prefix = f"{self.namespace}/"

        def _list() -> list[StoredFile]:
            out: list[StoredFile] = []
            for o in self.client.list_objects(self.bucket_name, prefix=prefix, recursive=True):
                if len(out) >= limit:
                    break
                if o.is_dir or not o.object_name:
                    continue
                try:
                    stat = self.client.stat_object(self.bucket_name, o.object_name)
                except S3Error as e:
                    if e.code in MISSING_OBJECT_CODES:
                        continue  # deleted while listing
                    raise
                out.append(self._to_record(o.object_name, stat))
            return out

        try:
            return await to_thread.run_sync(_list)
        except (S3Error, HTTPError) as e:
            logger.error(f"❌ Failed to list '{prefix}': {e}")
            raise FileStoreError(f"Listing failed for '{prefix}': {e}") from e

    async def delete(self, public_id: str) -> None:
        if not public_id.strip("/"):
            raise StoredFileNotFoundError(public_id)
        object_name = self._object_name(public_id)

        def _delete() -> None:
            # S3 deletes are silent on missing keys: stat first to report not-found
            try:
                self.client.stat_object(self.bucket_name, object_name)
            except S3Error as e:
                if e.code in MISSING_OBJECT_CODES:
                    raise StoredFileNotFoundError(public_id) from e
                raise
            self.client.remove_object(self.bucket_name, object_name)

        lock = self._delete_locks.get(object_name)
        if lock is None:
            lock = asyncio.Lock()
            self._delete_locks[object_name] = lock

        try:
            async with lock:
                await to_thread.run_sync(_delete)
            logger.info(f"🗑️ Deleted '{object_name}' from bucket '{self.bucket_name}'")
        except (S3Error, HTTPError) as e:
            logger.error(f"❌ Failed to delete '{object_name}': {e}")
            raise FileStoreError(f"Delete failed for '{public_id}': {e}") from e

    # -------- helpers --------

    def _object_name(self, public_id: str) -> str:
        return f"{self.namespace}/{public_id.lstrip('/')}"

    def _url(self, object_name: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url}/{self.bucket_name}/{quote(object_name)}"
        return self.client.presigned_get_object(self.bucket_name, object_name, expires=self.presigned_url_expiry)

    def _to_record(self, object_name: str, stat) -> StoredFile:
        public_id = object_name[len(self.namespace) + 1 :]
        metadata = stat.metadata or {}
        raw_name = metadata.get(f"x-amz-meta-{ORIGINAL_NAME_META}")
        return StoredFile(
            public_id=public_id,
            original_name=unquote(raw_name) if raw_name else public_id,
            url=self._url(object_name),
            size_bytes=stat.size,
            content_type=stat.content_type,
            resource_type=resource_type_for(stat.content_type),
            created_at=stat.last_modified,
        )


def _http_client(timeout: float) -> urllib3.PoolManager:
    # Bounds each HTTP exchange so a worker thread never outlives the backend timeout by much
    return urllib3.PoolManager(
        timeout=urllib3.Timeout(connect=min(timeout, 10.0), read=timeout),
        retries=urllib3.Retry(total=2, backoff_factor=0.2, status_forcelist=[500, 502, 503, 504]),
        maxsize=10,
    )
