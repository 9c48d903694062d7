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

import aiofiles
import pytest
from fastapi.testclient import TestClient

from file_drop_backend.application_context import ApplicationContext
from file_drop_backend.common.structures import (
    AppConfig,
    Configuration,
    LocalFileStorage,
    UploadConstraints,
)
from file_drop_backend.main import create_app


@pytest.fixture(scope="function")
def configuration(tmp_path) -> Configuration:
    """
    Local storage under a fresh tmp dir, with a small size limit so that
    oversized uploads are cheap to build.
    """
    return Configuration(
        app=AppConfig(
            base_url="/api",
            address="127.0.0.1",
            port=8888,
            log_level="info",
            authorized_origins=["http://allowed.test"],
        ),
        upload=UploadConstraints(
            max_size_bytes=1024,
            namespace="test-uploads",
            list_page_size=100,
            backend_timeout_seconds=5,
        ),
        storage=LocalFileStorage(type="local", root_path=str(tmp_path / "uploads")),
    )


@pytest.fixture(scope="function", autouse=True)
def app_context(configuration: Configuration):
    """
    Initializes the ApplicationContext with the test configuration.
    """
    ApplicationContext.reset_instance()  # 🧼 Reset singleton
    ApplicationContext(configuration)
    yield ApplicationContext.get_instance()
    ApplicationContext.reset_instance()


@pytest.fixture(scope="function")
def client_fixture(app_context: ApplicationContext):
    """
    TestClient for FastAPI app. ApplicationContext is preloaded.
    """
    app = create_app(app_context.get_config())
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def file_store(app_context: ApplicationContext):
    """
    Returns the file store after ApplicationContext is initialized.
    """
    return app_context.get_file_store()


@pytest.fixture
def slow_sidecar_writes(monkeypatch):
    """
    Returns a function delaying every metadata sidecar write of the local store
    by the given number of seconds.
    """
    real_open = aiofiles.open

    class DelayedOpen:
        def __init__(self, delay, args, kwargs):
            self.delay = delay
            self.args = args
            self.kwargs = kwargs
            self._ctx = None

        async def __aenter__(self):
            await asyncio.sleep(self.delay)
            self._ctx = real_open(*self.args, **self.kwargs)
            return await self._ctx.__aenter__()

        async def __aexit__(self, *exc_info):
            return await self._ctx.__aexit__(*exc_info)

    def slow_down(delay: float) -> None:
        def open_(file, mode="r", *args, **kwargs):
            if str(file).endswith(".json") and "w" in mode:
                return DelayedOpen(delay, (file, mode, *args), kwargs)
            return real_open(file, mode, *args, **kwargs)

        monkeypatch.setattr(aiofiles, "open", open_)

    return slow_down
