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
from datetime import timedelta
from pathlib import Path
from typing import Optional

from file_drop_backend.common.structures import (
    CloudinaryFileStorage,
    Configuration,
    LocalFileStorage,
    MinioFileStorage,
)
from file_drop_backend.core.stores.files.base_file_store import BaseFileStore
from file_drop_backend.core.stores.files.cloudinary_file_store import CloudinaryFileStore
from file_drop_backend.core.stores.files.local_file_store import LocalFileStore
from file_drop_backend.core.stores.files.minio_file_store import MinioFileStore

logger = logging.getLogger(__name__)


class ApplicationContext:
    """
    Composition root. Holds the parsed configuration and builds the file store
    once; services receive the store and the upload constraints explicitly.
    """

    _instance: Optional["ApplicationContext"] = None
    _file_store_instance: Optional[BaseFileStore] = None

    def __init__(self, config: Configuration):
        # Allow reuse if already initialized
        if ApplicationContext._instance is not None:
            return

        self.config = config
        self._file_store_instance = None
        ApplicationContext._instance = self
        self._log_config_summary()

    @classmethod
    def get_instance(cls) -> "ApplicationContext":
        """
        Get the singleton instance of ApplicationContext.
        Raises:
            RuntimeError: If the ApplicationContext is not initialized.
        """
        if cls._instance is None:
            raise RuntimeError("ApplicationContext is not initialized yet.")
        return cls._instance

    @classmethod
    def reset_instance(cls):
        """Reset the singleton instance (used in tests)."""
        cls._instance = None

    def get_config(self) -> Configuration:
        return self.config

    def get_file_store(self) -> BaseFileStore:
        """
        Factory method to get the storage backend selected by the configuration.
        The store is built on first call and reused afterwards.
        Returns:
            BaseFileStore: An instance of the storage backend.
        """
        if self._file_store_instance is not None:
            return self._file_store_instance

        storage = self.config.storage
        namespace = self.config.upload.namespace

        if isinstance(storage, LocalFileStorage):
            store: BaseFileStore = LocalFileStore(
                Path(storage.root_path).expanduser(),
                namespace=namespace,
                public_url_prefix=storage.public_url_prefix,
            )
        elif isinstance(storage, MinioFileStorage):
            store = MinioFileStore(
                endpoint=storage.endpoint,
                access_key=storage.access_key,
                secret_key=storage.secret_key,
                bucket_name=storage.bucket_name,
                secure=storage.secure,
                namespace=namespace,
                public_base_url=storage.public_base_url,
                presigned_url_expiry=timedelta(hours=storage.presigned_url_expiry_hours),
                request_timeout=self.config.upload.backend_timeout_seconds,
            )
        elif isinstance(storage, CloudinaryFileStorage):
            store = CloudinaryFileStore(
                cloud_name=storage.cloud_name,
                api_key=storage.api_key,
                api_secret=storage.api_secret,
                namespace=namespace,
                secure=storage.secure,
                allowed_formats=self.config.upload.allowed_extensions,
                timeout=self.config.upload.backend_timeout_seconds,
            )
        else:
            raise ValueError(f"Unsupported storage backend: {storage.type}")

        self._file_store_instance = store
        return store

    def _log_config_summary(self):
        upload = self.config.upload
        logger.info("🔧 Application configuration summary:")
        logger.info("--------------------------------------------------")
        logger.info(f"  📦 File storage backend: {self.config.storage.type}")
        logger.info(f"  📁 Namespace: {upload.namespace}")
        max_size = f"{upload.max_size_bytes} bytes" if upload.max_size_bytes else "unbounded"
        logger.info(f"  📏 Max upload size: {max_size}")
        logger.info(f"  🧾 Allowed extensions: {', '.join(upload.allowed_extensions) or 'any'}")
        logger.info(f"  ⏱️ Backend timeout: {upload.backend_timeout_seconds}s")
        logger.info(f"  🌐 Authorized origins: {', '.join(self.config.app.authorized_origins) or 'none'}")
        logger.info("--------------------------------------------------")
