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

from typing import List, Optional

from pydantic import BaseModel

from file_drop_backend.core.stores.files.structures import StoredFile


class UploadResponse(BaseModel):
    success: bool = True
    filename: str
    url: str
    public_id: str


class FileEntry(BaseModel):
    name: str
    url: str
    public_id: str
    type: Optional[str] = None
    size: Optional[int] = None
    content_type: Optional[str] = None

    @classmethod
    def from_stored(cls, stored: StoredFile) -> "FileEntry":
        return cls(
            name=stored.original_name,
            url=stored.url,
            public_id=stored.public_id,
            type=stored.resource_type,
            size=stored.size_bytes,
            content_type=stored.content_type,
        )


class FileListResponse(BaseModel):
    files: List[FileEntry]


class DeleteResponse(BaseModel):
    success: bool = True


class ErrorResponse(BaseModel):
    error: str
