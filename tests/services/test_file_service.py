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
import time
from io import BytesIO

import pytest
from anyio import to_thread
from starlette.datastructures import Headers, UploadFile

from file_drop_backend.common.structures import UploadConstraints
from file_drop_backend.core.stores.files.base_file_store import BaseFileStore, FileStoreError, StoredFileNotFoundError
from file_drop_backend.core.stores.files.local_file_store import LocalFileStore
from file_drop_backend.core.stores.files.structures import StoredFile
from file_drop_backend.features.files.service import FileService, UploadValidationError


class InMemoryFileStore(BaseFileStore):
    """Records every call; lets tests inject latency."""

    def __init__(self, delay: float = 0.0):
        self.namespace = "mem"
        self.delay = delay
        self.objects: dict[str, StoredFile] = {}
        self.contents: dict[str, bytes] = {}
        self.list_limits: list[int] = []
        self.deleted: list[str] = []
        self._next_id = 0

    async def store(self, content, original_name, content_type="application/octet-stream"):
        if self.delay:
            await asyncio.sleep(self.delay)
        public_id = f"id-{self._next_id}"
        self._next_id += 1
        record = StoredFile(public_id=public_id, original_name=original_name, url=f"mem://{public_id}", size_bytes=len(content), content_type=content_type)
        self.objects[public_id] = record
        self.contents[public_id] = content
        return record

    async def list(self, limit):
        self.list_limits.append(limit)
        return list(self.objects.values())[:limit]

    async def delete(self, public_id):
        if public_id not in self.objects:
            raise StoredFileNotFoundError(public_id)
        del self.objects[public_id]
        self.deleted.append(public_id)


class WorkerThreadFileStore(InMemoryFileStore):
    """Writes from a worker thread that keeps running after a timeout, like the SDK-backed stores."""

    def __init__(self, blocking_delay: float, fail: bool = False):
        super().__init__()
        self.blocking_delay = blocking_delay
        self.fail = fail

    async def store(self, content, original_name, content_type="application/octet-stream"):
        await to_thread.run_sync(time.sleep, self.blocking_delay)
        if self.fail:
            raise FileStoreError("connection reset")
        return await super().store(content, original_name, content_type)


def make_upload(name: str, content: bytes, content_type: str = "text/plain") -> UploadFile:
    return UploadFile(file=BytesIO(content), filename=name, headers=Headers({"content-type": content_type}))


@pytest.fixture
def store() -> InMemoryFileStore:
    return InMemoryFileStore()


@pytest.fixture
def service(store) -> FileService:
    return FileService(store, UploadConstraints(max_size_bytes=16, list_page_size=10, backend_timeout_seconds=1))


@pytest.mark.asyncio
async def test_upload_persists_content(service, store):
    stored = await service.upload(make_upload("note.txt", b"0123456789"))
    assert stored.original_name == "note.txt"
    assert store.contents[stored.public_id] == b"0123456789"
    assert stored.content_type == "text/plain"


@pytest.mark.asyncio
@pytest.mark.parametrize("upload", [None, make_upload("", b"data")])
async def test_upload_requires_a_file(service, store, upload):
    with pytest.raises(UploadValidationError, match="No file received"):
        await service.upload(upload)
    assert store.objects == {}


@pytest.mark.asyncio
async def test_upload_over_limit_never_reaches_store(service, store):
    with pytest.raises(UploadValidationError, match="maximum size of 16 bytes"):
        await service.upload(make_upload("big.txt", b"x" * 17))
    assert store.objects == {}


@pytest.mark.asyncio
async def test_unbounded_upload_reads_all_chunks(store):
    service = FileService(store, UploadConstraints(max_size_bytes=None))
    payload = b"y" * (3 * 1024 * 1024 + 5)
    stored = await service.upload(make_upload("big.txt", payload))
    assert store.contents[stored.public_id] == payload


@pytest.mark.asyncio
async def test_extension_check_is_case_insensitive(service):
    stored = await service.upload(make_upload("PHOTO.JPG", b"\xff\xd8", "image/jpeg"))
    assert stored.original_name == "PHOTO.JPG"


@pytest.mark.asyncio
@pytest.mark.parametrize("name", ["script.sh", "Makefile"])
async def test_disallowed_extension(service, store, name):
    with pytest.raises(UploadValidationError):
        await service.upload(make_upload(name, b"echo"))
    assert store.objects == {}


@pytest.mark.asyncio
async def test_content_type_allow_list(store):
    service = FileService(store, UploadConstraints(allowed_content_types=["image/png"]))
    await service.upload(make_upload("a.png", b"png", "image/png"))
    with pytest.raises(UploadValidationError, match="Content type"):
        await service.upload(make_upload("b.png", b"png", "text/plain"))


@pytest.mark.asyncio
async def test_client_path_is_stripped(service):
    stored = await service.upload(make_upload("C:\\Users\\me\\note.txt", b"hi"))
    assert stored.original_name == "note.txt"


@pytest.mark.asyncio
@pytest.mark.parametrize("requested, effective", [(None, 10), (3, 3), (500, 10)])
async def test_list_limit_is_clamped(service, store, requested, effective):
    await service.list_files(requested)
    assert store.list_limits == [effective]


@pytest.mark.asyncio
async def test_slow_backend_times_out():
    slow = InMemoryFileStore(delay=0.3)
    service = FileService(slow, UploadConstraints(backend_timeout_seconds=0.05))
    with pytest.raises(FileStoreError, match="timed out"):
        await service.upload(make_upload("note.txt", b"late"))
    await service.wait_pending_cleanups()
    assert await service.list_files() == []


@pytest.mark.asyncio
async def test_timed_out_upload_is_removed_once_the_worker_finishes():
    store = WorkerThreadFileStore(blocking_delay=0.3)
    service = FileService(store, UploadConstraints(backend_timeout_seconds=0.05))
    with pytest.raises(FileStoreError, match="timed out"):
        await service.upload(make_upload("note.txt", b"late"))
    await service.wait_pending_cleanups()
    assert await service.list_files() == []
    assert store.deleted == ["id-0"]


@pytest.mark.asyncio
async def test_timed_out_upload_that_fails_later_needs_no_removal():
    store = WorkerThreadFileStore(blocking_delay=0.2, fail=True)
    service = FileService(store, UploadConstraints(backend_timeout_seconds=0.05))
    with pytest.raises(FileStoreError, match="timed out"):
        await service.upload(make_upload("note.txt", b"late"))
    await service.wait_pending_cleanups()
    assert store.deleted == []
    assert await service.list_files() == []


@pytest.mark.asyncio
async def test_timed_out_local_upload_leaves_nothing_on_disk(tmp_path, slow_sidecar_writes):
    store = LocalFileStore(tmp_path / "root", namespace="ns")
    service = FileService(store, UploadConstraints(backend_timeout_seconds=0.1))
    slow_sidecar_writes(0.4)
    with pytest.raises(FileStoreError, match="timed out"):
        await service.upload(make_upload("note.txt", b"late"))
    await service.wait_pending_cleanups()
    assert await service.list_files() == []
    assert [p for p in store.namespace_dir.rglob("*") if p.is_file()] == []


@pytest.mark.asyncio
async def test_second_delete_is_not_found(service):
    stored = await service.upload(make_upload("note.txt", b"hi"))
    await service.delete(stored.public_id)
    with pytest.raises(StoredFileNotFoundError):
        await service.delete(stored.public_id)
