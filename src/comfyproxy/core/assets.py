"""Remote asset staging.

Workflow values that point at externally hosted images cannot be used by
the engine directly; the engine only reads files from its own input
namespace.  Staging bridges the gap:

1. Download the remote resource into memory.
2. Derive a filename from the final URL path segment.
3. Infer the content type from the filename extension (no sniffing).
4. Upload the bytes as multipart form data to ``/upload/image``.
5. Return the engine-assigned name, which replaces the URL in the workflow.

Nothing is written to local disk.  Distinct values have no ordering
dependency, so :meth:`AssetStager.stage_values` stages them concurrently.
"""

from __future__ import annotations

import asyncio
import logging
import posixpath
from collections.abc import Mapping
from typing import Any
from urllib.parse import unquote, urlsplit

from comfyproxy.core.client import ComfyClient
from comfyproxy.core.errors import ProtocolError
from comfyproxy.core.urls import is_remote_url

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"

# Extension → MIME type.  Lookup is case-insensitive on the extension.
CONTENT_TYPES: dict[str, str] = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".bmp": "image/bmp",
    ".tif": "image/tiff",
    ".tiff": "image/tiff",
}


def asset_filename(url: str, default: str = "image.png") -> str:
    """Return the final path segment of *url*, or *default* if it is empty."""
    path = unquote(urlsplit(url).path)
    name = posixpath.basename(path)
    return name or default


def infer_content_type(filename: str) -> str:
    """Map a filename's extension to a MIME type.

    Unknown or missing extensions map to ``application/octet-stream``.
    """
    _, ext = posixpath.splitext(filename)
    return CONTENT_TYPES.get(ext.lower(), DEFAULT_CONTENT_TYPE)


class AssetStager:
    """Downloads remote assets and registers them with the engine."""

    def __init__(
        self,
        client: ComfyClient,
        *,
        category: str = "input",
        overwrite: bool = True,
        default_name: str = "image.png",
    ) -> None:
        self._client = client
        self._category = category
        self._overwrite = overwrite
        self._default_name = default_name

    async def stage(self, url: str) -> str:
        """Stage one remote asset and return its engine reference name.

        Args:
            url: Absolute ``http``/``https`` URL of the asset.

        Returns:
            The engine-assigned name, prefixed with ``subfolder/`` when the
            engine stored it in a subfolder.

        Raises:
            TransportError: If the download or the upload fails on the wire.
            ProtocolError: If either side answers with an error or the upload
                response carries no ``name``.
        """
        filename = asset_filename(url, self._default_name)
        content_type = infer_content_type(filename)

        logger.info("Staging %s as %s (%s)", url, filename, content_type)
        data = await self._client.download(url)

        result = await self._client.upload_image(
            filename,
            data,
            content_type,
            category=self._category,
            overwrite=self._overwrite,
        )
        name = result.get("name")
        if not name:
            raise ProtocolError(f"Upload of {filename} returned no name: {result}")

        subfolder = result.get("subfolder") or ""
        reference = f"{subfolder}/{name}" if subfolder else str(name)
        logger.info("Staged %s -> %s (%d bytes)", url, reference, len(data))
        return reference

    async def stage_values(self, values: Mapping[str, Any]) -> dict[str, Any]:
        """Return a copy of *values* with every remote URL staged.

        Literal values are passed through untouched.  The input mapping is
        not modified.  Each distinct URL is staged once, however many keys
        reference it.

        Uploads are named after the URL's final path segment, so two
        different URLs ending in the same segment (``.../141/512.jpg`` and
        ``.../142/512.jpg``) collide in the engine's input namespace; with
        overwrite enabled both keys may end up naming whichever upload
        landed last.
        """
        resolved = dict(values)
        urls = list(dict.fromkeys(value for value in resolved.values() if is_remote_url(value)))
        if not urls:
            return resolved

        names = dict(zip(urls, await asyncio.gather(*(self.stage(url) for url in urls))))
        for key, value in resolved.items():
            if is_remote_url(value):
                resolved[key] = names[value]
        return resolved
