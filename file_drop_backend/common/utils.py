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
import os
import traceback
from typing import Dict, Optional

import yaml

from file_drop_backend.common.structures import Configuration

logger = logging.getLogger(__name__)


def parse_server_configuration(configuration_path: str) -> Configuration:
    """
    Parses the server configuration from a YAML file, then applies the
    environment overrides (PORT, LOG_LEVEL, ALLOWED_ORIGINS).

    Args:
        configuration_path (str): The path to the configuration YAML file.

    Returns:
        Configuration: The parsed configuration object.
    """
    with open(configuration_path, "r") as f:
        try:
            config: Dict = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            print(f"Error while parsing configuration file {configuration_path}: {e}")
            exit(1)
    return Configuration(**apply_environment_overrides(config))


def apply_environment_overrides(config: Dict) -> Dict:
    app = dict(config.get("app") or {})
    port = os.getenv("PORT")
    if port:
        app["port"] = int(port)
    log_level = os.getenv("LOG_LEVEL")
    if log_level:
        app["log_level"] = log_level
    origins = os.getenv("ALLOWED_ORIGINS")
    if origins is not None:
        app["authorized_origins"] = [o.strip() for o in origins.split(",") if o.strip()]
    return {**config, "app": app}


def log_exception(e: Exception, context_message: Optional[str] = None) -> str:
    """
    Logs an exception with full details and returns a short summary string
    that is safe to show to an operator dashboard (never to an API caller).

    Args:
        e (Exception): The exception to log.
        context_message (Optional[str]): Additional context for the logs.

    Returns:
        str: A human-readable summary of the exception.
    """
    error_type = type(e).__name__
    error_message = str(e)
    stack_trace = traceback.format_exc()

    cause = getattr(e, "__cause__", None) or getattr(e, "__context__", None)
    root_cause = repr(cause) if cause else error_message

    summary = f"{error_type}: {error_message}"
    if context_message:
        summary = f"{context_message} | {summary}"

    logger.error("Exception occurred: %s", summary, stacklevel=2)
    logger.error("Root cause: %s", root_cause, stacklevel=2)
    logger.debug("Stack trace:\n%s", stack_trace, stacklevel=2)
    return summary
