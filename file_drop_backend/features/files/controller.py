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
from typing import Annotated, Optional

from fastapi import APIRouter, File, HTTPException, Query, UploadFile

from file_drop_backend.core.stores.files.base_file_store import FileStoreError, StoredFileNotFoundError
from file_drop_backend.features.files.service import FileService, UploadValidationError
from file_drop_backend.features.files.structures import (
    DeleteResponse,
    ErrorResponse,
    FileEntry,
    FileListResponse,
    UploadResponse,
)

logger = logging.getLogger(__name__)


class FileController:
    """
    Controller exposing the upload, listing and deletion endpoints.

    Endpoints:
    ----------
    - `POST /upload`: multipart upload of a single file part
    - `GET /files`: catalog of the stored files
    - `DELETE /delete/{public_id}`: remove one stored file

    Error bodies are `{"error": ...}`, produced by the exception handlers
    registered in main.py from the HTTPException raised here.
    """

    def __init__(self, router: APIRouter, service: FileService):
        self.service = service

        def handle_exception(e: Exception) -> HTTPException:
            if isinstance(e, UploadValidationError):
                return HTTPException(status_code=400, detail=str(e))
            if isinstance(e, StoredFileNotFoundError):
                return HTTPException(status_code=404, detail="File not found")
            if isinstance(e, FileStoreError):
                logger.error(f"Storage backend error: {e}", exc_info=True)
                return HTTPException(status_code=500, detail=str(e))

            logger.error(f"Internal server error: {e}", exc_info=True)
            return HTTPException(status_code=500, detail="Server error")

        self._register_routes(router, handle_exception, service.constraints.field_name)

    def _register_routes(self, router: APIRouter, handle_exception, field_name: str):
        error_responses = {
            400: {"model": ErrorResponse},
            404: {"model": ErrorResponse},
            500: {"model": ErrorResponse},
        }

        @router.post(
            "/upload",
            tags=["Files"],
            response_model=UploadResponse,
            responses=error_responses,
            summary="Upload a single file",
            description="""
        Accepts a multipart body with exactly one file part. Size, extension and MIME type
        are checked before anything is sent to the storage backend.
        """,
        )
        async def upload_file(
            file: Annotated[Optional[UploadFile], File(alias=field_name, description="Binary payload")] = None,
        ) -> UploadResponse:
            try:
                stored = await self.service.upload(file)
            except Exception as e:
                raise handle_exception(e)
            finally:
                if file is not None:
                    await file.close()
            return UploadResponse(filename=stored.original_name, url=stored.url, public_id=stored.public_id)

        @router.get(
            "/files",
            tags=["Files"],
            response_model=FileListResponse,
            response_model_exclude_none=True,
            responses=error_responses,
            summary="List stored files",
        )
        async def list_files(
            limit: Annotated[Optional[int], Query(ge=1, description="Maximum number of files, capped by the server page size")] = None,
        ) -> FileListResponse:
            try:
                stored = await self.service.list_files(limit)
            except Exception as e:
                raise handle_exception(e)
            return FileListResponse(files=[FileEntry.from_stored(s) for s in stored])

        @router.delete(
            "/delete/{public_id:path}",
            tags=["Files"],
            response_model=DeleteResponse,
            responses=error_responses,
            summary="Delete a stored file by its public id",
        )
        async def delete_file(public_id: str) -> DeleteResponse:
            try:
                await self.service.delete(public_id)
            except Exception as e:
                raise handle_exception(e)
            return DeleteResponse()
