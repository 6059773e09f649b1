"""Tests for comfyproxy.core.config: configuration management.

Tests cover:
- Default values for the configuration fields.
- Environment variable overrides via the COMFY_ prefix.
- Derived URLs and the credential header helper.
- Pydantic validation constraints.
"""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from comfyproxy.core.config import ProxyConfig


class TestConfigDefaults:
    """Verify that ProxyConfig provides sensible defaults."""

    def test_default_engine_url(self, monkeypatch):
        monkeypatch.delenv("COMFY_API_URL", raising=False)
        cfg = ProxyConfig(_env_file=None)
        assert cfg.api_url == "http://127.0.0.1:8188"
        assert cfg.submission_url == "http://127.0.0.1:8188/prompt"

    def test_event_channel_unset_by_default(self, monkeypatch):
        monkeypatch.delenv("COMFY_WS_URL", raising=False)
        cfg = ProxyConfig(_env_file=None)
        assert cfg.ws_url is None
        assert cfg.event_url is None

    def test_default_retrieval(self, monkeypatch):
        monkeypatch.delenv("COMFY_OUTPUT_MODE", raising=False)
        cfg = ProxyConfig(_env_file=None)
        assert cfg.output_mode == "history"
        assert cfg.output_node_id == "9"
        assert cfg.output_folder is None

    def test_default_upload_settings(self):
        cfg = ProxyConfig(_env_file=None)
        assert cfg.input_category == "input"
        assert cfg.upload_overwrite is True
        assert cfg.default_asset_name == "image.png"

    def test_default_server_port(self, monkeypatch):
        monkeypatch.delenv("COMFY_SERVER_PORT", raising=False)
        assert ProxyConfig(_env_file=None).server_port == 3000

    def test_client_ids_are_unique(self, monkeypatch):
        monkeypatch.delenv("COMFY_CLIENT_ID", raising=False)
        assert ProxyConfig(_env_file=None).client_id != ProxyConfig(_env_file=None).client_id


class TestConfigEnvironment:
    """Verify COMFY_* environment overrides."""

    def test_env_overrides(self, monkeypatch, temp_dir: Path):
        monkeypatch.setenv("COMFY_WS_URL", "ws://engine:8188/ws")
        monkeypatch.setenv("COMFY_OUTPUT_MODE", "filesystem")
        monkeypatch.setenv("COMFY_OUTPUT_FOLDER", str(temp_dir))
        monkeypatch.setenv("COMFY_SETTLE_DELAY", "0.5")
        monkeypatch.setenv("COMFY_SHARED_CHANNEL", "false")

        cfg = ProxyConfig(_env_file=None)

        assert cfg.ws_url == "ws://engine:8188/ws"
        assert cfg.output_mode == "filesystem"
        assert cfg.output_folder == temp_dir
        assert cfg.settle_delay == 0.5
        assert cfg.shared_channel is False

    def test_env_is_case_insensitive(self, monkeypatch):
        monkeypatch.setenv("comfy_api_url", "http://lower:1")
        assert ProxyConfig(_env_file=None).api_url == "http://lower:1"


class TestDerivedValues:
    """Verify derived URLs and headers."""

    def test_prompt_url_override(self):
        cfg = ProxyConfig(_env_file=None, prompt_url="http://gw/comfy/prompt")
        assert cfg.submission_url == "http://gw/comfy/prompt"

    def test_trailing_slash_is_dropped(self):
        cfg = ProxyConfig(_env_file=None, api_url="http://engine:8188/")
        assert cfg.submission_url == "http://engine:8188/prompt"

    def test_event_url_sets_client_id(self):
        cfg = ProxyConfig(_env_file=None, ws_url="ws://engine/ws?token=t&clientId=x", client_id="me")
        assert cfg.event_url.startswith("ws://engine/ws?")
        assert "token=t" in cfg.event_url
        assert "clientId=me" in cfg.event_url
        assert "clientId=x" not in cfg.event_url

    def test_auth_headers(self):
        cfg = ProxyConfig(_env_file=None, auth_header="X-Api-Key", auth_token="k")
        assert cfg.auth_headers() == {"X-Api-Key": "k"}

    def test_auth_headers_need_both_parts(self):
        assert ProxyConfig(_env_file=None, auth_header="X-Api-Key").auth_headers() == {}
        assert ProxyConfig(_env_file=None).auth_headers() == {}


class TestConfigValidation:
    """Verify Pydantic constraints."""

    def test_invalid_output_mode(self):
        with pytest.raises(ValidationError):
            ProxyConfig(_env_file=None, output_mode="s3")

    def test_port_out_of_range(self):
        with pytest.raises(ValidationError):
            ProxyConfig(_env_file=None, server_port=80)

    def test_timeout_must_be_positive(self):
        with pytest.raises(ValidationError):
            ProxyConfig(_env_file=None, completion_timeout=0)

    def test_negative_settle_delay(self):
        with pytest.raises(ValidationError):
            ProxyConfig(_env_file=None, settle_delay=-1)
