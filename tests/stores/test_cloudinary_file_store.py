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


"""Cloudinary store tests. The SDK entry points are replaced by an in-memory account."""

import cloudinary.api
import cloudinary.uploader
import pytest
from cloudinary.exceptions import Error as CloudinaryError

from file_drop_backend.core.stores.files.base_file_store import FileStoreError, StoredFileNotFoundError
from file_drop_backend.core.stores.files.cloudinary_file_store import CloudinaryFileStore


class FakeAccount:
    def __init__(self):
        self.resources: dict[str, dict] = {}
        self.calls: list[dict] = []
        self.destroy_result: str | None = None

    def upload(self, file, **options):
        self.calls.append(options)
        name = options["filename_override"]
        stem, _, fmt = name.rpartition(".")
        resource_type = "image" if fmt in ("png", "jpg") else "raw"
        public_id = f"{options['folder']}/{stem}_{len(self.resources)}"
        resource = {
            "public_id": public_id,
            "resource_type": resource_type,
            "format": fmt,
            "bytes": len(file.read()),
            "secure_url": f"https://res.cloudinary.example/{resource_type}/upload/{public_id}.{fmt}",
            "created_at": "2025-03-01T10:00:00Z",
            "original_filename": stem,
            "context": {"custom": dict(options["context"])},
        }
        self.resources[public_id] = resource
        return resource

    def list(self, type, prefix, resource_type, max_results, context, **options):
        matching = [r for r in self.resources.values() if r["resource_type"] == resource_type and r["public_id"].startswith(prefix)]
        return {"resources": matching[:max_results]}

    def destroy(self, public_id, resource_type, invalidate, **options):
        if self.destroy_result:
            return {"result": self.destroy_result}
        resource = self.resources.get(public_id)
        if resource is None or resource["resource_type"] != resource_type:
            return {"result": "not found"}
        del self.resources[public_id]
        return {"result": "ok"}


@pytest.fixture
def account(monkeypatch) -> FakeAccount:
    fake = FakeAccount()
    monkeypatch.setattr(cloudinary.uploader, "upload", fake.upload)
    monkeypatch.setattr(cloudinary.uploader, "destroy", fake.destroy)
    monkeypatch.setattr(cloudinary.api, "resources", fake.list)
    return fake


@pytest.fixture
def store() -> CloudinaryFileStore:
    return CloudinaryFileStore(cloud_name="demo", api_key="key", api_secret="secret", namespace="sap-uploads", allowed_formats=["png", "pdf", "txt"])


@pytest.mark.asyncio
async def test_upload_passes_folder_formats_and_credentials(store, account):
    stored = await store.store(b"hello", "note.txt", "text/plain")
    options = account.calls[0]
    assert options["folder"] == "sap-uploads"
    assert options["resource_type"] == "auto"
    assert options["allowed_formats"] == ["png", "pdf", "txt"]
    assert options["cloud_name"] == "demo"
    assert stored.public_id.startswith("sap-uploads/")
    assert stored.original_name == "note.txt"
    assert stored.content_type == "text/plain"
    assert stored.url.startswith("https://")


@pytest.mark.asyncio
async def test_list_spans_resource_types(store, account):
    await store.store(b"png", "pic.png", "image/png")
    await store.store(b"txt", "note.txt", "text/plain")
    listed = await store.list(10)
    assert sorted(r.original_name for r in listed) == ["note.txt", "pic.png"]
    assert {r.resource_type for r in listed} == {"image", "raw"}
    assert len(await store.list(1)) == 1


@pytest.mark.asyncio
async def test_delete_then_not_found(store, account):
    stored = await store.store(b"txt", "note.txt", "text/plain")
    await store.delete(stored.public_id)
    with pytest.raises(StoredFileNotFoundError):
        await store.delete(stored.public_id)


@pytest.mark.asyncio
async def test_unexpected_destroy_result(store, account):
    account.destroy_result = "error"
    with pytest.raises(FileStoreError):
        await store.delete("sap-uploads/whatever")


@pytest.mark.asyncio
async def test_sdk_error_is_wrapped(store, monkeypatch):
    def rejected(*_args, **_kwargs):
        raise CloudinaryError("Invalid image file")

    monkeypatch.setattr(cloudinary.uploader, "upload", rejected)
    with pytest.raises(FileStoreError, match="Invalid image file"):
        await store.store(b"bad", "pic.png", "image/png")


@pytest.mark.asyncio
async def test_timeout_is_sent_with_every_call(account):
    store = CloudinaryFileStore(cloud_name="demo", api_key="key", api_secret="secret", namespace="sap-uploads", timeout=7)
    await store.store(b"txt", "note.txt", "text/plain")
    assert account.calls[0]["timeout"] == 7
