"""Async HTTP client for the remote generation engine.

:class:`ComfyClient` wraps a single :class:`httpx.AsyncClient` and exposes
the engine's HTTP contract as coroutines:

========  ===========================  =====================================
Method    Path                         Purpose
========  ===========================  =====================================
POST      ``/upload/image``            Register an input asset (multipart)
POST      ``/prompt``                  Submit a workflow, get a ``prompt_id``
GET       ``/history/{prompt_id}``     Per-job history record with outputs
GET       ``/view``                    Fetch a produced artifact
========  ===========================  =====================================

It also downloads remote assets from arbitrary hosts (without the engine
credential header).  All failures are translated into the
:mod:`comfyproxy.core.errors` taxonomy: transport problems become
:class:`TransportError`, non-success statuses and unusable bodies become
:class:`ProtocolError`.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from comfyproxy.core.config import ProxyConfig
from comfyproxy.core.errors import ProtocolError, TransportError

logger = logging.getLogger(__name__)


class ComfyClient:
    """Client for the engine's HTTP API.

    Attributes:
        base_url (str): Engine API base URL without a trailing slash.
    """

    def __init__(self, config: ProxyConfig, http: httpx.AsyncClient | None = None) -> None:
        """Initialise the client.

        Args:
            config: Proxy configuration (URLs, credential header, timeout).
            http: Optional pre-built :class:`httpx.AsyncClient`.  When omitted
                the client creates and owns one.
        """
        self._config = config
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(timeout=config.http_timeout)
        self.base_url = config.api_url.rstrip("/")

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_http:
            await self._http.aclose()

    # -- Transport ------------------------------------------------------------

    async def _request(
        self,
        method: str,
        url: str,
        *,
        authenticated: bool = True,
        **kwargs: Any,
    ) -> httpx.Response:
        headers = dict(kwargs.pop("headers", None) or {})
        if authenticated:
            headers.update(self._config.auth_headers())
        try:
            response = await self._http.request(method, url, headers=headers, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            raise ProtocolError(
                f"{method} {url} returned HTTP {status}: {exc.response.text[:200]}"
            ) from exc
        except httpx.TransportError as exc:
            raise TransportError(f"{method} {url} failed: {exc!r}") from exc
        return response

    @staticmethod
    def _json(response: httpx.Response) -> dict:
        try:
            body = response.json()
        except ValueError as exc:
            raise ProtocolError(f"{response.request.url} did not return JSON") from exc
        if not isinstance(body, dict):
            raise ProtocolError(f"{response.request.url} returned {type(body).__name__}, not an object")
        return body

    # -- Remote assets --------------------------------------------------------

    async def download(self, url: str) -> bytes:
        """Fetch a remote resource into memory.

        Redirects are followed.  The engine credential header is not sent to
        third-party hosts.
        """
        response = await self._request("GET", url, authenticated=False, follow_redirects=True)
        return response.content

    async def upload_image(
        self,
        filename: str,
        data: bytes,
        content_type: str,
        *,
        category: str = "input",
        overwrite: bool = True,
    ) -> dict:
        """Register bytes in the engine's input namespace.

        Args:
            filename: Name to register the asset under.
            data: Raw asset bytes.
            content_type: MIME type of the multipart file part.
            category: Target folder category (``type`` form field).
            overwrite: Whether an existing file of the same name is replaced.

        Returns:
            The engine's JSON response (``name``, ``subfolder``, ``type``).
        """
        response = await self._request(
            "POST",
            f"{self.base_url}/upload/image",
            files={"image": (filename, data, content_type)},
            data={"type": category, "overwrite": "true" if overwrite else "false"},
        )
        return self._json(response)

    # -- Jobs -----------------------------------------------------------------

    async def queue_prompt(self, workflow: Any, client_id: str | None = None) -> str:
        """Submit a resolved workflow and return its ``prompt_id``.

        Args:
            workflow: Resolved workflow structure.
            client_id: Event-channel client id the engine should route
                progress events to.  Omitted means broadcast.

        Raises:
            ProtocolError: If the response carries no ``prompt_id``.
        """
        payload: dict[str, Any] = {"prompt": workflow}
        if client_id:
            payload["client_id"] = client_id
        response = await self._request("POST", self._config.submission_url, json=payload)
        body = self._json(response)

        if body.get("node_errors"):
            logger.warning("Engine reported node errors: %s", body["node_errors"])

        prompt_id = body.get("prompt_id")
        if not prompt_id:
            raise ProtocolError(f"Engine did not return a prompt_id: {body}")
        logger.info("Queued prompt %s", prompt_id)
        return str(prompt_id)

    async def get_history(self, prompt_id: str) -> dict:
        """Return the history mapping for *prompt_id* (may be empty)."""
        response = await self._request("GET", f"{self.base_url}/history/{prompt_id}")
        return self._json(response)

    async def view(self, filename: str, subfolder: str = "", folder_type: str = "output") -> bytes:
        """Fetch a produced artifact by filename, subfolder and folder category."""
        response = await self._request(
            "GET",
            f"{self.base_url}/view",
            params={"filename": filename, "subfolder": subfolder, "type": folder_type},
        )
        return response.content
