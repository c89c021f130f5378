"""
Tests for campaign_engine/services/llm_client.py -- backend detection and
the subprocess and SDK backends, with the external calls faked.
"""

import subprocess
import threading
from types import SimpleNamespace

import anthropic
import httpx
import pytest

from campaign_engine.config import EngineSettings
from campaign_engine.errors import (
    CompletionCancelled,
    CompletionError,
    CompletionUnavailable,
)
from campaign_engine.services import llm_client
from campaign_engine.services.llm_client import BackendType, CompletionClient


# ------------------------------------------------------------------
# Fakes
# ------------------------------------------------------------------

class FakePopen:
    """Stands in for subprocess.Popen; behaviour set through class attributes."""

    stdout = '{"findings": []}'
    stderr = ""
    returncode_value = 0
    hang = False
    on_wait = None
    instances = []

    def __init__(self, cmd, **kwargs):
        self.cmd = cmd
        self.kwargs = kwargs
        self.returncode = None
        self.killed = False
        FakePopen.instances.append(self)

    def communicate(self, timeout=None):
        if self.hang:
            if self.on_wait is not None:
                self.on_wait()
            raise subprocess.TimeoutExpired(self.cmd, timeout)
        self.returncode = self.returncode_value
        return self.stdout, self.stderr

    def poll(self):
        return self.returncode

    def kill(self):
        self.killed = True
        self.returncode = -9

    def wait(self, timeout=None):
        return self.returncode


@pytest.fixture
def fake_popen(monkeypatch):
    monkeypatch.setattr(FakePopen, "instances", [])
    monkeypatch.setattr(llm_client.subprocess, "Popen", FakePopen)
    return FakePopen


class FakeStream:
    def __init__(self, events):
        self._events = events

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def __iter__(self):
        return iter(self._events)


def _delta(text):
    return SimpleNamespace(type="content_block_delta", delta=SimpleNamespace(text=text))


def _fake_anthropic(events=(), error=None, captured=None):
    class FakeAnthropic:
        def __init__(self, timeout=None):
            self.messages = self

        def stream(self, **kwargs):
            if captured is not None:
                captured.update(kwargs)
            if error is not None:
                raise error
            return FakeStream(events)

    return FakeAnthropic


# ------------------------------------------------------------------
# Detection
# ------------------------------------------------------------------

class TestBackendDetection:
    def test_offline(self, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        monkeypatch.setattr(llm_client.shutil, "which", lambda name: None)
        client = CompletionClient()
        assert client.backend is BackendType.OFFLINE
        assert not client.is_online

    def test_subprocess(self, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        monkeypatch.setattr(llm_client.shutil, "which", lambda name: "/usr/bin/claude")
        assert CompletionClient().backend is BackendType.SUBPROCESS

    def test_sdk_preferred(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test")
        monkeypatch.setattr(llm_client.shutil, "which", lambda name: "/usr/bin/claude")
        assert CompletionClient().backend is BackendType.SDK


class TestComplete:
    def test_offline_unavailable(self):
        client = CompletionClient(backend=BackendType.OFFLINE)
        with pytest.raises(CompletionUnavailable):
            client.complete("system", "user")

    def test_cancelled_before_send(self, fake_popen):
        event = threading.Event()
        event.set()
        client = CompletionClient(backend=BackendType.SUBPROCESS)
        with pytest.raises(CompletionCancelled):
            client.complete("system", "user", cancel_event=event)
        assert fake_popen.instances == []


# ------------------------------------------------------------------
# Subprocess backend
# ------------------------------------------------------------------

class TestSubprocessBackend:
    def test_returns_stdout(self, fake_popen):
        client = CompletionClient(backend=BackendType.SUBPROCESS)
        assert client.complete("be careful", "review this") == '{"findings": []}'
        (proc,) = fake_popen.instances
        assert proc.cmd[:3] == ["claude", "-p", "review this"]
        assert proc.cmd[-2:] == ["--system-prompt", "be careful"]

    def test_nonzero_exit(self, fake_popen, monkeypatch):
        monkeypatch.setattr(FakePopen, "returncode_value", 1)
        monkeypatch.setattr(FakePopen, "stderr", "not logged in")
        client = CompletionClient(backend=BackendType.SUBPROCESS)
        with pytest.raises(CompletionError, match="not logged in"):
            client.complete("s", "u")

    def test_empty_output(self, fake_popen, monkeypatch):
        monkeypatch.setattr(FakePopen, "stdout", "   \n")
        with pytest.raises(CompletionError):
            CompletionClient(backend=BackendType.SUBPROCESS).complete("s", "u")

    def test_timeout_kills_process(self, fake_popen, monkeypatch):
        monkeypatch.setattr(FakePopen, "hang", True)
        client = CompletionClient(EngineSettings(llm_timeout=0.2), backend=BackendType.SUBPROCESS)
        with pytest.raises(CompletionError, match="timed out"):
            client.complete("s", "u")
        assert fake_popen.instances[0].killed

    def test_cancel_while_waiting(self, fake_popen, monkeypatch):
        event = threading.Event()
        monkeypatch.setattr(FakePopen, "hang", True)
        monkeypatch.setattr(FakePopen, "on_wait", staticmethod(event.set))
        client = CompletionClient(backend=BackendType.SUBPROCESS)
        with pytest.raises(CompletionCancelled):
            client.complete("s", "u", cancel_event=event)
        assert fake_popen.instances[0].killed

    def test_missing_cli(self, monkeypatch):
        def missing(*args, **kwargs):
            raise FileNotFoundError("claude")

        monkeypatch.setattr(llm_client.subprocess, "Popen", missing)
        with pytest.raises(CompletionUnavailable):
            CompletionClient(backend=BackendType.SUBPROCESS).complete("s", "u")


# ------------------------------------------------------------------
# SDK backend
# ------------------------------------------------------------------

class TestSdkBackend:
    def test_accumulates_deltas(self, monkeypatch):
        captured = {}
        events = [
            SimpleNamespace(type="message_start"),
            _delta('{"findings"'),
            _delta(": []}"),
            SimpleNamespace(type="message_stop"),
        ]
        monkeypatch.setattr(anthropic, "Anthropic", _fake_anthropic(events, captured=captured))
        settings = EngineSettings(llm_model="claude-test", llm_max_tokens=512)
        client = CompletionClient(settings, backend=BackendType.SDK)

        assert client.complete("system", "user") == '{"findings": []}'
        assert captured["model"] == "claude-test"
        assert captured["max_tokens"] == 512
        assert captured["system"] == "system"
        assert captured["messages"] == [{"role": "user", "content": "user"}]

    def test_api_error_wrapped(self, monkeypatch):
        error = anthropic.APIConnectionError(
            request=httpx.Request("POST", "https://api.anthropic.com/v1/messages"),
        )
        monkeypatch.setattr(anthropic, "Anthropic", _fake_anthropic(error=error))
        with pytest.raises(CompletionError):
            CompletionClient(backend=BackendType.SDK).complete("s", "u")

    def test_cancel_during_stream(self, monkeypatch):
        client = CompletionClient(backend=BackendType.SDK)

        class CancellingEvents:
            def __iter__(self):
                yield _delta("partial")
                client.cancel()
                yield _delta(" more")

        monkeypatch.setattr(anthropic, "Anthropic", _fake_anthropic(CancellingEvents()))
        with pytest.raises(CompletionCancelled):
            client.complete("s", "u")
