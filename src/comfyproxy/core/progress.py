"""Completion detection over the engine's event channel.

The engine pushes JSON events over a WebSocket.  Two shapes matter here::

    {"type": "progress", "data": {"prompt_id": "...", "value": 20, "max": 20}}
    {"type": "status", "data": {"status": {"exec_info": {"queue_remaining": 0}}}}

A job is treated as complete when either its own progress reaches its
declared maximum, or the engine reports an empty queue.  Both signals are
accepted because the engine interleaves per-job progress with aggregate
queue state and neither arrives reliably on every deployment.  The queue
signal is coarse: with several jobs queued it can only fire once all of them
are done, and a deployment whose queue semantics differ could report it
before a specific job has finished.

Two waiters implement the same ``wait(prompt_id, timeout)`` contract:

- :class:`ProgressWatcher` opens one connection per request and closes it
  as soon as the job completes.
- :class:`EventChannel` keeps a single supervised connection for the whole
  process, reconnects when it drops, and demultiplexes events to waiters by
  prompt id.  Its ``available`` flag reports whether it is connected.

Binary frames (live previews) are ignored.  Both waiters bound the wait
with a deadline and raise :class:`CompletionTimeoutError` when it passes.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections import deque
from collections.abc import Callable
from typing import Any, AsyncContextManager

from websockets.asyncio.client import connect
from websockets.exceptions import WebSocketException

from comfyproxy.core.config import ProxyConfig
from comfyproxy.core.errors import (
    CompletionTimeoutError,
    ConfigurationError,
    TransportError,
)

logger = logging.getLogger(__name__)

SIGNAL_PROGRESS = "progress"
SIGNAL_QUEUE_EMPTY = "queue_empty"

# Returns an async context manager yielding an iterable WebSocket connection.
Connector = Callable[[], AsyncContextManager[Any]]


def parse_event(message: str | bytes) -> dict | None:
    """Decode a text frame into an event dict; ``None`` for anything else."""
    if isinstance(message, (bytes, bytearray)):
        return None
    try:
        event = json.loads(message)
    except ValueError:
        logger.debug("Ignoring undecodable event frame: %.80s", message)
        return None
    return event if isinstance(event, dict) else None


def queue_is_empty(event: dict) -> bool:
    """Return ``True`` if *event* is a status event reporting no queued jobs."""
    if event.get("type") != "status":
        return False
    data = event.get("data")
    if not isinstance(data, dict):
        return False
    status = data.get("status")
    exec_info = status.get("exec_info") if isinstance(status, dict) else None
    if not isinstance(exec_info, dict):
        return False
    return exec_info.get("queue_remaining") == 0


def completion_signal(event: dict, prompt_id: str) -> str | None:
    """Return which completion signal *event* carries for *prompt_id*.

    Returns:
        ``"progress"`` if the job's progress reached its maximum,
        ``"queue_empty"`` if the engine reports an empty queue, else ``None``.
    """
    if event.get("type") == "progress":
        data = event.get("data")
        if (
            isinstance(data, dict)
            and data.get("prompt_id") == prompt_id
            and data.get("max") is not None
            and data.get("value") == data.get("max")
        ):
            return SIGNAL_PROGRESS
        return None
    if queue_is_empty(event):
        return SIGNAL_QUEUE_EMPTY
    return None


def _timeout_error(prompt_id: str, timeout: float) -> CompletionTimeoutError:
    return CompletionTimeoutError(f"Prompt {prompt_id} did not complete within {timeout:g}s")


class ProgressWatcher:
    """Waits for one job on a dedicated event-channel connection.

    Submissions carry no ``client_id`` in this mode so the engine broadcasts
    progress to every connected socket.
    """

    client_id: str | None = None

    def __init__(self, config: ProxyConfig, connector: Connector | None = None) -> None:
        self._config = config
        self._connector = connector or self._open

    def _open(self) -> AsyncContextManager[Any]:
        return connect(
            self._config.ws_url,
            additional_headers=self._config.auth_headers(),
            max_size=None,
        )

    @property
    def available(self) -> bool:
        return bool(self._config.ws_url)

    async def wait(self, prompt_id: str, timeout: float | None = None) -> str:
        """Block until *prompt_id* completes and return the matching signal.

        Raises:
            ConfigurationError: If no event channel URL is configured.  No
                connection is attempted in that case.
            TransportError: If the channel fails or closes first.
            CompletionTimeoutError: If the deadline passes first.
        """
        if not self._config.ws_url:
            raise ConfigurationError("Missing event channel URL (COMFY_WS_URL)")
        timeout = timeout or self._config.completion_timeout
        try:
            return await asyncio.wait_for(self._listen(prompt_id), timeout)
        except asyncio.TimeoutError as exc:
            raise _timeout_error(prompt_id, timeout) from exc

    async def _listen(self, prompt_id: str) -> str:
        try:
            async with self._connector() as websocket:
                async for message in websocket:
                    event = parse_event(message)
                    if event is None:
                        continue
                    signal = completion_signal(event, prompt_id)
                    if signal:
                        logger.info("Prompt %s complete (%s)", prompt_id, signal)
                        return signal
        except (OSError, WebSocketException) as exc:
            raise TransportError(f"Event channel failed: {exc!r}") from exc
        raise TransportError(f"Event channel closed before prompt {prompt_id} completed")


class EventChannel:
    """Process-wide event channel with automatic reconnection.

    A background task owns the connection.  Callers register interest in a
    prompt id through :meth:`wait`; every inbound event is matched against
    the registered ids and resolves the corresponding futures.  An empty
    queue resolves all of them.

    Attributes:
        client_id (str): Client id this channel listens as.  Submissions must
            use it so the engine routes their progress events here.
    """

    # Completed prompt ids kept for waiters that register late.
    RECENT_LIMIT = 256

    def __init__(self, config: ProxyConfig, connector: Connector | None = None) -> None:
        self._config = config
        self._connector = connector or self._open
        self.client_id = config.client_id
        self._waiters: dict[str, list[asyncio.Future]] = {}
        self._recent: deque[str] = deque(maxlen=self.RECENT_LIMIT)
        self._task: asyncio.Task | None = None
        self._available = False

    def _open(self) -> AsyncContextManager[Any]:
        return connect(
            self._config.event_url,
            additional_headers=self._config.auth_headers(),
            max_size=None,
        )

    @property
    def available(self) -> bool:
        """Whether the channel is currently connected."""
        return self._available

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    # -- Lifecycle ------------------------------------------------------------

    def start(self) -> None:
        """Launch the supervising task.

        Raises:
            ConfigurationError: If no event channel URL is configured.
        """
        if not self._config.ws_url:
            raise ConfigurationError("Missing event channel URL (COMFY_WS_URL)")
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="comfy-event-channel")

    async def stop(self) -> None:
        """Cancel the supervising task and fail every outstanding waiter."""
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        self._available = False

        for futures in self._waiters.values():
            for future in futures:
                if not future.done():
                    future.set_exception(TransportError("Event channel stopped"))
        self._waiters.clear()

    async def _run(self) -> None:
        delay = self._config.reconnect_delay
        while True:
            try:
                async with self._connector() as websocket:
                    self._available = True
                    logger.info("Event channel connected")
                    async for message in websocket:
                        self._dispatch(message)
                logger.warning("Event channel closed; reconnecting in %.1fs", delay)
            except (OSError, WebSocketException) as exc:
                logger.warning("Event channel error: %r; reconnecting in %.1fs", exc, delay)
            except Exception:
                # CancelledError is not an Exception, so stop() still ends the loop.
                logger.exception("Unexpected event channel failure; reconnecting in %.1fs", delay)
            finally:
                self._available = False
            await asyncio.sleep(delay)

    # -- Dispatch -------------------------------------------------------------

    def _dispatch(self, message: str | bytes) -> None:
        event = parse_event(message)
        if event is None:
            return

        if queue_is_empty(event):
            for prompt_id in list(self._waiters):
                self._resolve(prompt_id, SIGNAL_QUEUE_EMPTY)
            return

        data = event.get("data")
        prompt_id = data.get("prompt_id") if isinstance(data, dict) else None
        if not isinstance(prompt_id, str):
            return
        if completion_signal(event, prompt_id) == SIGNAL_PROGRESS:
            if prompt_id in self._waiters:
                self._resolve(prompt_id, SIGNAL_PROGRESS)
            else:
                self._recent.append(prompt_id)

    def _resolve(self, prompt_id: str, signal: str) -> None:
        for future in self._waiters.pop(prompt_id, []):
            if not future.done():
                future.set_result(signal)
        logger.info("Prompt %s complete (%s)", prompt_id, signal)

    # -- Waiting --------------------------------------------------------------

    async def wait(self, prompt_id: str, timeout: float | None = None) -> str:
        """Block until *prompt_id* completes and return the matching signal.

        Raises:
            ConfigurationError: If the channel was never started.
            TransportError: If the supervising task has ended, or the channel
                is stopped while waiting.
            CompletionTimeoutError: If the deadline passes first.
        """
        if self._task is None:
            raise ConfigurationError("Event channel is not running")
        if self._task.done():
            raise TransportError("Event channel task has exited")
        if prompt_id in self._recent:
            self._recent.remove(prompt_id)
            return SIGNAL_PROGRESS

        timeout = timeout or self._config.completion_timeout
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._waiters.setdefault(prompt_id, []).append(future)
        try:
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError as exc:
            raise _timeout_error(prompt_id, timeout) from exc
        finally:
            futures = self._waiters.get(prompt_id)
            if futures is not None and future in futures:
                futures.remove(future)
                if not futures:
                    del self._waiters[prompt_id]
