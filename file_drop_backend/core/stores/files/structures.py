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

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class StoredFile(BaseModel):
    """
    Canonical record of one uploaded object, whatever backend holds it.

    This is the return type of `store()` and the element type of `list()` in
    BaseFileStore. Backends normalize their own metadata into this shape.

    Fields:
        public_id (str): Opaque identifier, unique within the store namespace.
            It is the only key accepted by `delete()`.

        original_name (str): File name supplied by the client at upload time.
            Display only, not guaranteed unique.

        url (str): Address where the stored bytes can be fetched. Relative for the
            local backend (served by this application), absolute otherwise.

        size_bytes (int, optional): Stored size, when the backend reports it.

        content_type (str, optional): MIME type, when known.

        resource_type (str, optional): Coarse classification ('image', 'video', 'raw').

        created_at (datetime, optional): Upload time, when the backend reports it.
    """

    public_id: str
    original_name: str
    url: str
    size_bytes: Optional[int] = None
    content_type: Optional[str] = None
    resource_type: Optional[str] = None
    created_at: Optional[datetime] = None


def resource_type_for(content_type: Optional[str]) -> str:
    if content_type and content_type.startswith("image/"):
        return "image"
    if content_type and content_type.startswith("video/"):
        return "video"
    return "raw"
