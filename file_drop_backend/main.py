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

#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
Entrypoint for the File Drop Backend App.
"""

import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

import uvicorn
from dotenv import load_dotenv
from fastapi import APIRouter, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse
from fastapi.staticfiles import StaticFiles
from rich.logging import RichHandler

from file_drop_backend.application_context import ApplicationContext
from file_drop_backend.common.fastapi_handlers import register_exception_handlers, register_security_headers
from file_drop_backend.common.structures import Configuration
from file_drop_backend.common.utils import parse_server_configuration
from file_drop_backend.core.stores.files.local_file_store import LocalFileStore
from file_drop_backend.features.files.controller import FileController
from file_drop_backend.features.files.service import FileService

# -----------------------
# LOGGING + ENVIRONMENT
# -----------------------

logger = logging.getLogger(__name__)


def configure_logging(log_level: str):
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s - %(levelname)s - %(filename)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[RichHandler(rich_tracebacks=False, show_time=False, show_path=False)],
        force=True,
    )
    # Make uvicorn loggers flow into our handler (no duplicates)
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        lg = logging.getLogger(name)
        lg.handlers.clear()
        lg.propagate = True
    logging.getLogger(__name__).info(f"Logging configured at {log_level.upper()} level.")


def load_environment(dotenv_path: str = "./config/.env"):
    if load_dotenv(dotenv_path):
        logging.getLogger().info(f"✅ Loaded environment variables from: {dotenv_path}")
    else:
        logging.getLogger().warning(f"⚠️ No .env file found at: {dotenv_path}")


def load_configuration() -> Configuration:
    load_environment()
    config_file = os.environ.get("CONFIG_FILE", "./config/configuration.yaml")
    return parse_server_configuration(config_file)


# -----------------------
# APP CREATION
# -----------------------


def create_app(configuration: Optional[Configuration] = None) -> FastAPI:
    if configuration is None:
        configuration = load_configuration()
        configure_logging(configuration.app.log_level)

    ApplicationContext(configuration)
    context = ApplicationContext.get_instance()
    configuration = context.get_config()
    base_url = configuration.app.base_url
    logger.info(f"🛠️ create_app() called with base_url={base_url}")

    store = context.get_file_store()
    file_service = FileService(store, configuration.upload)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        try:
            yield
        finally:
            logger.info("🧹 Lifespan exit: removing abandoned uploads.")
            await file_service.wait_pending_cleanups()

    app = FastAPI(
        title=configuration.app.name,
        docs_url=f"{base_url}/docs",
        redoc_url=f"{base_url}/redoc",
        openapi_url=f"{base_url}/openapi.json",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=configuration.app.authorized_origins,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["Content-Type", "Authorization"],
        allow_credentials=True,
    )
    register_security_headers(app)
    register_exception_handlers(app)

    router = APIRouter(prefix=base_url)
    FileController(router, file_service)
    app.include_router(router)
    logger.info("🧩 All controllers registered.")

    # Local blobs are served by this process; hosted backends return absolute URLs.
    if isinstance(store, LocalFileStore):
        app.mount(store.public_url_prefix, StaticFiles(directory=store.namespace_dir), name="files")
        logger.info(f"📂 Serving stored files from {store.namespace_dir} under {store.public_url_prefix}")

    _mount_frontend(app, configuration)
    return app


def _mount_frontend(app: FastAPI, configuration: Configuration) -> None:
    static_dir = configuration.app.static_dir
    if not static_dir:
        return
    root = Path(static_dir).expanduser()
    if not root.is_dir():
        logger.warning(f"⚠️ Static directory not found, skipping: {root}")
        return

    app.mount("/static", StaticFiles(directory=root), name="static")

    index_file = configuration.app.index_file
    if index_file and (root / index_file).is_file():
        index_path = root / index_file

        async def index() -> FileResponse:
            return FileResponse(index_path)

        # Served on / and on its own name without extension, e.g. /SAP-Customer
        for path in ("/", f"/{index_path.stem}"):
            app.add_api_route(path, index, methods=["GET"], include_in_schema=False)


# -----------------------
# MAIN ENTRYPOINT
# -----------------------


def run():
    configuration = load_configuration()
    configure_logging(configuration.app.log_level)
    # The reloader re-imports the app in a child process, so it needs the factory path
    app = "file_drop_backend.main:create_app" if configuration.app.reload else create_app(configuration)
    uvicorn.run(
        app,
        factory=configuration.app.reload,
        reload=configuration.app.reload,
        host=configuration.app.address,
        port=configuration.app.port,
        log_level=configuration.app.log_level.lower(),
        log_config=None,
    )


if __name__ == "__main__":
    run()
