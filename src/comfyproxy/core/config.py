"""Configuration management for the Comfy Proxy.

This module provides centralized configuration management using Pydantic Settings.
All configuration is loaded from environment variables with the COMFY_ prefix,
allowing the proxy to be pointed at a different engine without code changes.

Environment Variable Loading
-----------------------------
Configuration values are loaded in the following priority order:
1. Environment variables (COMFY_* prefix)
2. .env file in the project root
3. Default values defined in ProxyConfig

Example .env file:
    COMFY_API_URL=http://127.0.0.1:8188
    COMFY_WS_URL=ws://127.0.0.1:8188/ws
    COMFY_OUTPUT_MODE=filesystem
    COMFY_OUTPUT_FOLDER=/opt/ComfyUI/output

Global Configuration Instance
------------------------------
A global `config` instance is created automatically at module import time.
It is the default used by :mod:`comfyproxy.api.main`; tests construct their
own instances instead.

Usage Example
-------------
    from comfyproxy.core.config import config

    print(config.submission_url)
    print(config.auth_headers())

Output Modes
------------
The engine exposes its results in one of two ways per deployment:
- ``history``: results are listed in ``/history/{prompt_id}`` and fetched
  over HTTP from ``/view``.
- ``filesystem``: the proxy shares a volume with the engine and reads the
  newest file from ``output_folder``.
"""

import uuid
from pathlib import Path
from typing import Literal
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ProxyConfig(BaseSettings):
    """Main configuration for the Comfy Proxy.

    Attributes
    ----------
    Engine Connection:
        api_url : str
            Base URL of the engine HTTP API
        prompt_url : str | None
            Override for the job submission endpoint
        ws_url : str | None
            Event channel URL (``None`` means the channel is not configured)
        client_id : str
            Client id of the shared event channel and its submissions
        auth_header, auth_token : str | None
            Fixed credential header applied to every outbound call

    Retrieval:
        output_mode : Literal["history", "filesystem"]
            Which output channel the engine exposes
        output_node_id : str
            Node whose outputs are read from the history record
        output_folder : Path | None
            Directory scanned in filesystem mode

    Asset Staging:
        input_category : str
            Category tag sent with uploads
        upload_overwrite : bool
            Whether uploads replace existing files of the same name
        default_asset_name : str
            Filename used when a URL has no final path segment

    Timing:
        completion_timeout : float
            Upper bound on the completion wait, in seconds
        settle_delay : float
            Pause between completion and retrieval, in seconds
        http_timeout : float
            Per-call HTTP timeout, in seconds
        shared_channel : bool
            Keep one supervised event channel for the whole process
        reconnect_delay : float
            Pause between reconnect attempts of the shared channel

    Server:
        server_host, server_port, log_level
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="COMFY_",
        case_sensitive=False,
    )

    # Engine connection
    api_url: str = Field(
        default="http://127.0.0.1:8188",
        description="Base URL of the engine HTTP API",
    )
    prompt_url: str | None = Field(
        default=None,
        description="Job submission endpoint (defaults to {api_url}/prompt)",
    )
    ws_url: str | None = Field(
        default=None,
        description="Event channel URL, e.g. ws://127.0.0.1:8188/ws",
    )
    client_id: str = Field(
        default_factory=lambda: uuid.uuid4().hex,
        description="Client id of the shared event channel and its submissions",
    )
    auth_header: str | None = Field(
        default=None,
        description="Name of the credential header sent to the engine",
    )
    auth_token: str | None = Field(
        default=None,
        description="Value of the credential header sent to the engine",
    )

    # Retrieval
    output_mode: Literal["history", "filesystem"] = Field(
        default="history",
        description="Where finished images are read from",
    )
    output_node_id: str = Field(
        default="9",
        description="Workflow node whose images are returned (history mode)",
    )
    output_folder: Path | None = Field(
        default=None,
        description="Engine output directory (filesystem mode)",
    )

    # Asset staging
    input_category: str = Field(default="input", description="Upload category tag")
    upload_overwrite: bool = Field(default=True, description="Overwrite existing uploads")
    default_asset_name: str = Field(
        default="image.png",
        description="Filename used when a URL has no final path segment",
    )

    # Timing
    completion_timeout: float = Field(default=600.0, gt=0)
    settle_delay: float = Field(default=0.0, ge=0)
    http_timeout: float = Field(default=60.0, gt=0)
    shared_channel: bool = Field(
        default=True,
        description="Keep one supervised event channel instead of one per request",
    )
    reconnect_delay: float = Field(default=2.0, ge=0)

    # Server settings
    server_host: str = Field(
        default="0.0.0.0",
        description="Server bind address",
    )
    server_port: int = Field(
        default=3000,
        description="Server port",
        ge=1024,
        le=65535,
    )
    log_level: str = Field(default="INFO", description="Root logging level")

    @property
    def submission_url(self) -> str:
        """Return the job submission endpoint."""
        return self.prompt_url or f"{self.api_url.rstrip('/')}/prompt"

    @property
    def event_url(self) -> str | None:
        """Return ``ws_url`` with ``clientId`` set to :attr:`client_id`."""
        if not self.ws_url:
            return None
        parts = urlsplit(self.ws_url)
        query = dict(parse_qsl(parts.query))
        query["clientId"] = self.client_id
        return urlunsplit(parts._replace(query=urlencode(query)))

    def auth_headers(self) -> dict[str, str]:
        """Return the credential header as a dict, or an empty dict."""
        if self.auth_header and self.auth_token:
            return {self.auth_header: self.auth_token}
        return {}


# Global configuration instance
# Loads values from environment variables (COMFY_* prefix) and .env file.
config = ProxyConfig()
