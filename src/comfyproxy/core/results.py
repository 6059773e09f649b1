"""Output retrieval for completed jobs.

Two mutually exclusive strategies, selected per deployment by
``ProxyConfig.output_mode``:

- :class:`HistoryRetriever` reads the job's history record, looks up a fixed
  output node, and downloads every image it lists from ``/view`` with the
  folder category ``output``.  The first listed image is returned.
- :class:`FilesystemRetriever` scans a directory shared with the engine and
  reads the most recently modified regular file.

Both return raw bytes; :func:`encode_image` turns them into base64 text for
the HTTP response.
"""

from __future__ import annotations

import asyncio
import base64
import logging
from pathlib import Path
from typing import Protocol

from comfyproxy.core.client import ComfyClient
from comfyproxy.core.config import ProxyConfig
from comfyproxy.core.errors import ConfigurationError, ProtocolError

logger = logging.getLogger(__name__)

OUTPUT_FOLDER_TYPE = "output"


class Retriever(Protocol):
    async def retrieve(self, prompt_id: str) -> bytes: ...


def encode_image(data: bytes) -> str:
    """Return *data* as base64 text."""
    return base64.b64encode(data).decode("ascii")


class HistoryRetriever:
    """Fetches outputs listed in the engine's per-job history record."""

    def __init__(self, client: ComfyClient, node_id: str) -> None:
        self._client = client
        self._node_id = node_id

    def output_images(self, history: dict, prompt_id: str) -> list[dict]:
        """Return the image descriptors of the output node.

        Raises:
            ProtocolError: If the record, the node or its ``images`` list is
                missing.
        """
        record = history.get(prompt_id)
        if not isinstance(record, dict):
            raise ProtocolError(f"No history record for prompt {prompt_id}")

        node_output = (record.get("outputs") or {}).get(self._node_id)
        if not isinstance(node_output, dict):
            raise ProtocolError(f"Prompt {prompt_id} has no output for node {self._node_id}")

        images = node_output.get("images")
        if not isinstance(images, list) or not images:
            raise ProtocolError(f"Output node {self._node_id} of prompt {prompt_id} lists no images")
        return images

    async def fetch_all(self, prompt_id: str) -> list[bytes]:
        """Download every image of the output node concurrently, in listed order."""
        history = await self._client.get_history(prompt_id)
        images = self.output_images(history, prompt_id)

        for image in images:
            if not isinstance(image, dict) or not image.get("filename"):
                raise ProtocolError(f"Malformed image entry in history of {prompt_id}: {image}")

        return await asyncio.gather(
            *(
                self._client.view(
                    image["filename"],
                    image.get("subfolder") or "",
                    OUTPUT_FOLDER_TYPE,
                )
                for image in images
            )
        )

    async def retrieve(self, prompt_id: str) -> bytes:
        outputs = await self.fetch_all(prompt_id)
        logger.info(
            "Retrieved %d output(s) for prompt %s from history; returning the first",
            len(outputs),
            prompt_id,
        )
        return outputs[0]


def latest_file(directory: Path) -> Path:
    """Return the most recently modified regular file in *directory*.

    Files sharing the newest mtime are ordered by name, so the choice does
    not depend on directory listing order.

    Raises:
        ProtocolError: If the directory is missing, unreadable, or holds no
            regular files.
    """
    try:
        entries = list(directory.iterdir())
    except OSError as exc:
        raise ProtocolError(f"Cannot read output directory {directory}: {exc}") from exc

    candidates: list[tuple[float, str, Path]] = []
    for entry in entries:
        try:
            if not entry.is_file():
                continue
            mtime = entry.stat().st_mtime
        except FileNotFoundError:
            # Removed between listing and stat.
            continue
        except OSError as exc:
            raise ProtocolError(f"Cannot read output file {entry}: {exc}") from exc
        candidates.append((mtime, entry.name, entry))

    if not candidates:
        raise ProtocolError(f"No images found in {directory}")
    return max(candidates)[2]


class FilesystemRetriever:
    """Reads the newest file from the engine's output directory."""

    def __init__(self, directory: Path) -> None:
        self._directory = Path(directory)

    async def retrieve(self, prompt_id: str) -> bytes:
        path = await asyncio.to_thread(latest_file, self._directory)
        logger.info("Returning %s for prompt %s", path.name, prompt_id)
        return await asyncio.to_thread(path.read_bytes)


def build_retriever(config: ProxyConfig, client: ComfyClient) -> Retriever:
    """Return the retriever for ``config.output_mode``.

    Raises:
        ConfigurationError: If filesystem mode has no ``output_folder``.
    """
    if config.output_mode == "filesystem":
        if config.output_folder is None:
            raise ConfigurationError("Filesystem output mode requires COMFY_OUTPUT_FOLDER")
        return FilesystemRetriever(config.output_folder)
    return HistoryRetriever(client, config.output_node_id)
