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

import secrets
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import PurePosixPath

from file_drop_backend.core.stores.files.structures import StoredFile


class FileStoreError(Exception):
    """Raised when the storage backend fails (network, auth, quota, I/O, timeout)."""


class StoredFileNotFoundError(FileStoreError):
    """Raised when a deletion targets a public id the backend does not know."""

    def __init__(self, public_id: str):
        self.public_id = public_id
        super().__init__(f"File not found: {public_id}")


class BaseFileStore(ABC):
    """
    Minimal abstract interface for a namespace-scoped upload store.

    The rest of the application only ever talks to this contract, so the local
    filesystem, MinIO and Cloudinary backends are interchangeable.

    Implementations MUST ensure:
    - Every object lives under `self.namespace` and listings never leak other namespaces
    - `store()` never overwrites an existing object (a re-upload gets a new public id)
    - `store()` leaves nothing behind when it fails
    - `delete()` raises StoredFileNotFoundError for an unknown id, FileStoreError for anything else
    """

    namespace: str

    @abstractmethod
    async def store(self, content: bytes, original_name: str, content_type: str = "application/octet-stream") -> StoredFile:
        """
        Persist one uploaded file.

        Parameters:
            content (bytes): Raw bytes of the upload, already validated.
            original_name (str): Client-supplied file name.
            content_type (str): MIME type declared by the client.

        Returns:
            StoredFile: The created record, with public_id and url populated.

        Raises:
            FileStoreError: If the backend rejects or fails the write.
        """
        ...

    @abstractmethod
    async def list(self, limit: int) -> list[StoredFile]:
        """
        List stored files of the namespace, in backend order, at most `limit` of them.

        Raises:
            FileStoreError: If the listing cannot be completed. Partial results are never returned.
        """
        ...

    @abstractmethod
    async def delete(self, public_id: str) -> None:
        """
        Delete exactly one stored file.

        Raises:
            StoredFileNotFoundError: If no object has this public id.
            FileStoreError: Any other backend failure.
        """
        ...


def generate_public_id(original_name: str) -> str:
    """
    Build a public id from the upload time and the original extension,
    e.g. '20251019T101502123456-1f3a9c0b.pdf'. The random suffix keeps ids unique
    when two uploads land within the same microsecond.
    """
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
    suffix = PurePosixPath(original_name).suffix.lower()
    return f"{stamp}-{secrets.token_hex(4)}{suffix}"
