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


import os
from pathlib import Path
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

"""
This module defines the top level configuration structures. A single Configuration
instance is parsed at startup and handed to the ApplicationContext, which builds the
storage backend and the services from it. All models are frozen: nothing mutates
the configuration once the application runs.
"""

DEFAULT_ALLOWED_EXTENSIONS = ["jpg", "jpeg", "png", "gif", "pdf", "doc", "docx", "xls", "xlsx", "mp4", "mov", "txt"]


###########################################################
#
#  --- File Storage Configuration
#


class LocalFileStorage(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["local"]
    root_path: str = Field(default=str(Path("~/.fred/file-drop/uploads")), description="Local storage directory")
    public_url_prefix: str = Field(default="/files", description="URL prefix under which stored blobs are served")


class MinioFileStorage(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["minio"]
    endpoint: str = Field(default="localhost:9000", description="MinIO API URL")
    access_key: str = Field(default_factory=lambda: os.environ["MINIO_ACCESS_KEY"], description="MinIO access key from env")
    secret_key: str = Field(default_factory=lambda: os.environ["MINIO_SECRET_KEY"], description="MinIO secret key from env")
    bucket_name: str = Field(default="file-drop", description="Bucket holding the uploaded files")
    secure: bool = Field(default=False, description="Use TLS (https)")
    public_base_url: Optional[str] = Field(default=None, description="Public URL of the bucket host. Presigned URLs are used when unset")
    presigned_url_expiry_hours: int = Field(default=24, description="Validity of presigned download URLs")


class CloudinaryFileStorage(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["cloudinary"]
    cloud_name: str = Field(default_factory=lambda: os.environ["CLOUDINARY_CLOUD_NAME"], description="Cloudinary cloud name from env")
    api_key: str = Field(default_factory=lambda: os.environ["CLOUDINARY_API_KEY"], description="Cloudinary API key from env")
    api_secret: str = Field(default_factory=lambda: os.environ["CLOUDINARY_API_SECRET"], description="Cloudinary API secret from env")
    secure: bool = Field(default=True, description="Return https URLs")


FileStorageConfig = Annotated[Union[LocalFileStorage, MinioFileStorage, CloudinaryFileStorage], Field(discriminator="type")]


###########################################################
#
#  --- Upload constraints
#


class UploadConstraints(BaseModel):
    """
    Rules applied to every upload before a single byte reaches the storage backend.

    Attributes:
        max_size_bytes: Maximum accepted part size. None means unbounded.
        allowed_extensions: Accepted file extensions (lowercase, without dot). Empty disables the check.
        allowed_content_types: Accepted MIME types. Empty disables the check.
        namespace: Folder/prefix under which files are stored and listed.
        field_name: Name of the multipart field carrying the file.
        list_page_size: Hard cap on the number of files returned by a listing.
        backend_timeout_seconds: Timeout applied to every storage backend call.
    """

    model_config = ConfigDict(frozen=True)

    max_size_bytes: Optional[int] = Field(default=10 * 1024 * 1024, ge=1, description="Maximum upload size in bytes, null for unbounded")
    allowed_extensions: List[str] = Field(default_factory=lambda: list(DEFAULT_ALLOWED_EXTENSIONS))
    allowed_content_types: List[str] = Field(default_factory=list)
    namespace: str = Field(default="sap-uploads", min_length=1)
    field_name: str = Field(default="file")
    list_page_size: int = Field(default=100, ge=1)
    backend_timeout_seconds: float = Field(default=30.0, gt=0)


class AppConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: Optional[str] = "File Drop Backend"
    base_url: str = "/api"
    address: str = "127.0.0.1"
    port: int = 3000
    log_level: str = "info"
    reload: bool = False
    authorized_origins: List[str] = Field(default_factory=list, description="Origins allowed to call the API cross-origin")
    static_dir: Optional[str] = Field(default=None, description="Directory served under /static")
    index_file: Optional[str] = Field(default=None, description="Page of static_dir served on /")


class Configuration(BaseModel):
    model_config = ConfigDict(frozen=True)

    app: AppConfig = Field(default_factory=AppConfig)
    upload: UploadConstraints = Field(default_factory=UploadConstraints)
    storage: FileStorageConfig = Field(..., description="File storage configuration")
