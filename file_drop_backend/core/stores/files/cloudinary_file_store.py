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


import logging
import mimetypes
from io import BytesIO
from typing import Any, Dict, List, Optional

import cloudinary.api
import cloudinary.uploader
from anyio import to_thread
from cloudinary.exceptions import Error as CloudinaryError
from urllib3.exceptions import HTTPError

from file_drop_backend.core.stores.files.base_file_store import (
    BaseFileStore,
    FileStoreError,
    StoredFileNotFoundError,
)
from file_drop_backend.core.stores.files.structures import StoredFile

logger = logging.getLogger(__name__)

# Cloudinary partitions assets by resource type; list and destroy are per type.
RESOURCE_TYPES = ("image", "video", "raw")
ORIGINAL_NAME_CONTEXT = "original_name"


class CloudinaryFileStore(BaseFileStore):
    """
    Upload store delegating persistence to the hosted Cloudinary media API.

    Files go to the `{namespace}` folder with `resource_type="auto"`; Cloudinary
    generates the public id (folder included). Credentials are passed on every
    call instead of through the SDK's process-wide `cloudinary.config()`.
    """

    def __init__(
        self,
        cloud_name: str,
        api_key: str,
        api_secret: str,
        namespace: str,
        secure: bool = True,
        allowed_formats: Optional[List[str]] = None,
        timeout: Optional[float] = None,
    ):
        self.namespace = namespace.strip("/")
        self.allowed_formats = list(allowed_formats or [])
        self._options: Dict[str, Any] = {
            "cloud_name": cloud_name,
            "api_key": api_key,
            "api_secret": api_secret,
            "secure": secure,
        }
        if timeout:
            # HTTP timeout of every SDK request, so worker threads do not hang on a stalled call
            self._options["timeout"] = timeout

    async def store(self, content: bytes, original_name: str, content_type: str = "application/octet-stream") -> StoredFile:
        params: Dict[str, Any] = {
            "folder": self.namespace,
            "resource_type": "auto",
            "filename_override": original_name,
            "unique_filename": True,
            "overwrite": False,
            "context": {ORIGINAL_NAME_CONTEXT: original_name},
        }
        if self.allowed_formats:
            params["allowed_formats"] = self.allowed_formats

        try:
            result = await to_thread.run_sync(lambda: cloudinary.uploader.upload(BytesIO(content), **params, **self._options))
        except (CloudinaryError, HTTPError) as e:
            logger.error(f"❌ Cloudinary upload failed for '{original_name}': {e}")
            raise FileStoreError(f"Upload failed for '{original_name}': {e}") from e

        logger.info(f"📤 Uploaded '{original_name}' to Cloudinary as '{result.get('public_id')}'")
        record = self._to_record(result)
        return record.model_copy(update={"original_name": original_name, "content_type": content_type or record.content_type})

    async def list(self, limit: int) -> list[StoredFile]:
        out: list[StoredFile] = []
        for resource_type in RESOURCE_TYPES:
            remaining = limit - len(out)
            if remaining <= 0:
                break
            try:
                result = await to_thread.run_sync(lambda rt=resource_type, n=remaining: self._resources(rt, n))
            except (CloudinaryError, HTTPError) as e:
                logger.error(f"❌ Cloudinary listing failed for '{self.namespace}/' ({resource_type}): {e}")
                raise FileStoreError(f"Listing failed for '{self.namespace}/': {e}") from e
            out.extend(self._to_record(r) for r in result.get("resources", [])[:remaining])
        return out

    async def delete(self, public_id: str) -> None:
        for resource_type in RESOURCE_TYPES:
            try:
                result = await to_thread.run_sync(
                    lambda rt=resource_type: cloudinary.uploader.destroy(public_id, resource_type=rt, invalidate=True, **self._options)
                )
            except (CloudinaryError, HTTPError) as e:
                logger.error(f"❌ Cloudinary delete failed for '{public_id}': {e}")
                raise FileStoreError(f"Delete failed for '{public_id}': {e}") from e

            outcome = result.get("result")
            if outcome == "ok":
                logger.info(f"🗑️ Deleted '{public_id}' ({resource_type}) from Cloudinary")
                return
            if outcome != "not found":
                raise FileStoreError(f"Delete failed for '{public_id}': {outcome}")
        raise StoredFileNotFoundError(public_id)

    def _resources(self, resource_type: str, max_results: int) -> Dict[str, Any]:
        return cloudinary.api.resources(
            type="upload",
            prefix=f"{self.namespace}/",
            resource_type=resource_type,
            max_results=min(max_results, 500),
            context=True,
            **self._options,
        )

    @staticmethod
    def _to_record(resource: Dict[str, Any]) -> StoredFile:
        custom = (resource.get("context") or {}).get("custom") or {}
        fmt = resource.get("format")
        guessed = mimetypes.guess_type(f"file.{fmt}")[0] if fmt else None
        name = custom.get(ORIGINAL_NAME_CONTEXT) or resource.get("original_filename") or resource["public_id"]
        return StoredFile(
            public_id=resource["public_id"],
            original_name=name,
            url=resource.get("secure_url") or resource.get("url") or "",
            size_bytes=resource.get("bytes"),
            content_type=guessed,
            resource_type=resource.get("resource_type"),
            created_at=resource.get("created_at"),
        )
