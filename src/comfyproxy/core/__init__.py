"""Core workflow execution pipeline for the Comfy Proxy.

This package holds everything between the HTTP boundary and the remote
generation engine:

- **config.py**: Environment-based configuration using Pydantic Settings
  (``COMFY_`` prefix).
- **errors.py**: Failure taxonomy surfaced to the API layer.
- **urls.py**: Classifies workflow values as remote URLs.
- **client.py**: Async ``httpx`` client for the engine's HTTP API.
- **assets.py**: Downloads remote images and uploads them as engine inputs.
- **templates.py**: ``{{placeholder}}`` substitution over workflow JSON.
- **progress.py**: Completion detection over the engine's WebSocket.
- **results.py**: History-based and filesystem-based output retrieval.
- **pipeline.py**: Sequences the steps above for one request.

Usage Example
-------------
    from comfyproxy.core import ComfyClient, AssetStager, ProgressWatcher
    from comfyproxy.core import WorkflowPipeline, build_retriever, config

    client = ComfyClient(config)
    pipeline = WorkflowPipeline(
        client,
        AssetStager(client),
        ProgressWatcher(config),
        build_retriever(config, client),
    )
    base64_image = await pipeline.generate(workflow, {"prompt": "a cat"})
"""

from comfyproxy.core.assets import AssetStager
from comfyproxy.core.client import ComfyClient
from comfyproxy.core.config import ProxyConfig, config
from comfyproxy.core.errors import (
    CompletionTimeoutError,
    ConfigurationError,
    ProtocolError,
    ProxyError,
    TemplateError,
    TransportError,
)
from comfyproxy.core.pipeline import WorkflowPipeline
from comfyproxy.core.progress import EventChannel, ProgressWatcher
from comfyproxy.core.results import FilesystemRetriever, HistoryRetriever, build_retriever
from comfyproxy.core.templates import resolve_template
from comfyproxy.core.urls import is_remote_url

__all__ = [
    "AssetStager",
    "ComfyClient",
    "CompletionTimeoutError",
    "ConfigurationError",
    "EventChannel",
    "FilesystemRetriever",
    "HistoryRetriever",
    "ProgressWatcher",
    "ProtocolError",
    "ProxyConfig",
    "ProxyError",
    "TemplateError",
    "TransportError",
    "WorkflowPipeline",
    "build_retriever",
    "config",
    "is_remote_url",
    "resolve_template",
]
