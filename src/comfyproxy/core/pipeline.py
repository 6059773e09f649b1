"""Workflow execution pipeline.

:class:`WorkflowPipeline` sequences one ``generate`` request:

1. Stage every remote-URL value as an engine input asset.
2. Substitute the staged values into the workflow template.
3. Submit the resolved workflow and obtain a ``prompt_id``.
4. Wait for the engine to report completion on its event channel.
5. Optionally pause for ``settle_delay`` seconds.
6. Retrieve the output image and encode it as base64.

Each step starts only after the previous one finished.  Any failure
propagates unchanged to the caller; nothing partial is returned.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Any, Protocol

from comfyproxy.core.assets import AssetStager
from comfyproxy.core.client import ComfyClient
from comfyproxy.core.results import Retriever, encode_image
from comfyproxy.core.templates import resolve_template

logger = logging.getLogger(__name__)


class CompletionWaiter(Protocol):
    client_id: str | None

    async def wait(self, prompt_id: str, timeout: float | None = None) -> str: ...


class WorkflowPipeline:
    """Runs templated workflows against the engine and returns the image."""

    def __init__(
        self,
        client: ComfyClient,
        stager: AssetStager,
        waiter: CompletionWaiter,
        retriever: Retriever,
        *,
        settle_delay: float = 0.0,
        completion_timeout: float | None = None,
    ) -> None:
        self._client = client
        self._stager = stager
        self._waiter = waiter
        self._retriever = retriever
        self._settle_delay = settle_delay
        self._completion_timeout = completion_timeout

    async def generate(self, workflow: Any, values: Mapping[str, Any]) -> str:
        """Execute *workflow* with *values* and return the image as base64.

        Args:
            workflow: Workflow template (structure or JSON text).
            values: Placeholder identifier → value.  Remote URLs are staged.

        Returns:
            Base64 text of the selected output image.

        Raises:
            ValueError: If either input is ``None``.
            ProxyError: From any step; see :mod:`comfyproxy.core.errors`.
        """
        if workflow is None:
            raise ValueError("Missing workflow")
        if values is None:
            raise ValueError("Missing workflowValues")

        staged = await self._stager.stage_values(values)
        resolved = resolve_template(workflow, staged)

        prompt_id = await self._client.queue_prompt(resolved, client_id=self._waiter.client_id)
        await self._waiter.wait(prompt_id, self._completion_timeout)

        if self._settle_delay:
            await asyncio.sleep(self._settle_delay)

        image = await self._retriever.retrieve(prompt_id)
        logger.info("Prompt %s produced %d bytes", prompt_id, len(image))
        return encode_image(image)
