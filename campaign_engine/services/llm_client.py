"""
campaign_engine/services/llm_client.py -- Single-shot completion client.

Provides ``complete(system_prompt, user_prompt)`` with three backends
tried in order:

    1. Anthropic SDK (direct API) -- used when ANTHROPIC_API_KEY is set
    2. Subprocess (claude CLI)   -- print mode, plain-text output
    3. Offline mode              -- raises CompletionUnavailable

A call makes one request: it returns one answer or raises one
exception.  Callers can abort a call in flight by
setting the ``cancel_event`` they pass in (or via ``cancel()``); the SDK
backend checks it between stream events and the subprocess backend checks
it while waiting on the process.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import sys
import threading
import time
from enum import Enum, auto
from typing import Optional

from campaign_engine.config import EngineSettings
from campaign_engine.errors import (
    CompletionCancelled,
    CompletionError,
    CompletionUnavailable,
)

logger = logging.getLogger(__name__)

_POLL_INTERVAL = 0.1


class BackendType(Enum):
    SDK = auto()
    SUBPROCESS = auto()
    OFFLINE = auto()


class CompletionClient:
    """Completion capability consumed by the semantic checker.

    Parameters
    ----------
    settings : EngineSettings, optional
        Model name, token budget, temperature and timeout.
    backend : BackendType, optional
        Force a backend instead of detecting one.
    """

    def __init__(
        self,
        settings: Optional[EngineSettings] = None,
        backend: Optional[BackendType] = None,
    ):
        self._settings = settings or EngineSettings()
        self._timeout = self._settings.llm_timeout
        self._cancel = threading.Event()
        if backend is None:
            self._backend = self._detect_backend()
        else:
            self._backend = backend

    @property
    def backend(self) -> BackendType:
        return self._backend

    @property
    def is_online(self) -> bool:
        return self._backend != BackendType.OFFLINE

    def cancel(self) -> None:
        """Signal cancellation of the current request."""
        self._cancel.set()

    # ------------------------------------------------------------------
    # Backend detection
    # ------------------------------------------------------------------

    def _detect_backend(self) -> BackendType:
        if self._try_sdk():
            logger.info("Completion backend: Anthropic SDK")
            return BackendType.SDK
        if shutil.which("claude") is not None:
            logger.info("Completion backend: subprocess (claude CLI)")
            return BackendType.SUBPROCESS
        logger.info("Completion backend: offline mode")
        return BackendType.OFFLINE

    @staticmethod
    def _try_sdk() -> bool:
        """Check if the Anthropic SDK is importable and an API key is set."""
        if not os.environ.get("ANTHROPIC_API_KEY", ""):
            return False
        try:
            import anthropic  # noqa: F401
        except ImportError:
            logger.info("ANTHROPIC_API_KEY is set but the anthropic package is missing")
            return False
        return True

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        cancel_event: Optional[threading.Event] = None,
    ) -> str:
        """Return the model's full text response.

        Raises
        ------
        CompletionUnavailable
            No backend is configured.
        CompletionCancelled
            ``cancel()`` was called or *cancel_event* was set.
        CompletionError
            The backend failed or returned nothing.
        """
        self._cancel.clear()
        cancelled = _AnyEvent(self._cancel, cancel_event)
        if cancelled.is_set():
            raise CompletionCancelled("Cancelled before the request was sent")

        if self._backend == BackendType.SDK:
            text = self._complete_sdk(system_prompt, user_prompt, cancelled)
        elif self._backend == BackendType.SUBPROCESS:
            text = self._complete_subprocess(system_prompt, user_prompt, cancelled)
        else:
            raise CompletionUnavailable(
                "No completion backend available. Set ANTHROPIC_API_KEY or "
                "install the claude CLI."
            )

        if not text.strip():
            raise CompletionError("Completion backend returned an empty response")
        return text

    # ------------------------------------------------------------------
    # SDK backend
    # ------------------------------------------------------------------

    def _complete_sdk(
        self, system_prompt: str, user_prompt: str, cancelled: "_AnyEvent"
    ) -> str:
        import anthropic

        client = anthropic.Anthropic(timeout=self._timeout)
        accumulated: list[str] = []
        try:
            with client.messages.stream(
                model=self._settings.llm_model,
                max_tokens=self._settings.llm_max_tokens,
                temperature=self._settings.llm_temperature,
                system=system_prompt,
                messages=[{"role": "user", "content": user_prompt}],
            ) as stream:
                for event in stream:
                    if cancelled.is_set():
                        raise CompletionCancelled("Cancelled during streaming")
                    if getattr(event, "type", "") == "content_block_delta":
                        text = getattr(event.delta, "text", None)
                        if text:
                            accumulated.append(text)
        except anthropic.APIError as e:
            raise CompletionError(f"Anthropic API request failed: {e}") from e
        return "".join(accumulated)

    # ------------------------------------------------------------------
    # Subprocess backend
    # ------------------------------------------------------------------

    def _complete_subprocess(
        self, system_prompt: str, user_prompt: str, cancelled: "_AnyEvent"
    ) -> str:
        cmd = ["claude", "-p", user_prompt, "--output-format", "text"]
        if system_prompt:
            cmd.extend(["--system-prompt", system_prompt])

        # CREATE_NO_WINDOW prevents a console flash on Windows
        creation_flags = 0
        if sys.platform == "win32":
            creation_flags = subprocess.CREATE_NO_WINDOW

        try:
            proc = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                creationflags=creation_flags,
            )
        except FileNotFoundError as e:
            raise CompletionUnavailable("claude CLI not found") from e

        deadline = time.monotonic() + self._timeout
        try:
            while True:
                if cancelled.is_set():
                    raise CompletionCancelled("Cancelled while waiting for claude CLI")
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise CompletionError(
                        f"claude CLI timed out after {self._timeout:g}s"
                    )
                try:
                    stdout, stderr = proc.communicate(
                        timeout=min(_POLL_INTERVAL, remaining)
                    )
                    break
                except subprocess.TimeoutExpired:
                    continue
        finally:
            if proc.poll() is None:
                proc.kill()
                proc.wait(timeout=5)

        if proc.returncode != 0:
            raise CompletionError(
                f"claude CLI exited with code {proc.returncode}: {stderr[:200]}"
            )
        return stdout


class _AnyEvent:
    """Read-only view that is set when any of its events is set."""

    def __init__(self, *events: Optional[threading.Event]):
        self._events = [e for e in events if e is not None]

    def is_set(self) -> bool:
        return any(e.is_set() for e in self._events)
