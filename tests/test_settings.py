"""Tests for the settings persistence layer."""

from __future__ import annotations

import json
import os
from dataclasses import replace
from pathlib import Path

import pytest

from actionflow.client import AIClient
from actionflow.orchestration.types import ExecutionBudget, ExecutionMode, ProviderCapabilities
from actionflow.services import Settings, SettingsStore, redact_secret


@pytest.fixture(autouse=True)
def _clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in list(os.environ):
        if name.startswith("ACTIONFLOW_"):
            monkeypatch.delenv(name, raising=False)


def test_load_returns_defaults_when_file_missing(tmp_path: Path) -> None:
    store = SettingsStore(tmp_path / "settings.json")

    assert store.load() == Settings()


def test_save_and_load_roundtrip(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    original = Settings(
        provider="groq",
        base_url="https://api.groq.com/openai/v1",
        model="llama-3.3-70b-versatile",
        organization="acme",
        temperature=0.3,
        mode=ExecutionMode.DELEGATED,
        max_iterations=7,
        parallel_tools=True,
        default_headers={"X-Test": "1"},
    )

    SettingsStore(path).save(original)
    reloaded = SettingsStore(path).load()

    assert reloaded == original


def test_api_key_is_never_written(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"

    SettingsStore(path).save(Settings(api_key="sk-super-secret"))

    payload = json.loads(path.read_text(encoding="utf-8"))
    assert "api_key" not in payload
    assert "sk-super-secret" not in path.read_text(encoding="utf-8")
    assert payload["api_key_hint"] == redact_secret("sk-super-secret")
    assert payload["version"] == 1
    assert SettingsStore(path).load().api_key == ""


def test_save_is_atomic(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "settings.json"

    SettingsStore(path).save(Settings())

    assert path.exists()
    assert not path.with_suffix(".tmp").exists()


def test_invalid_json_falls_back_to_defaults(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    path.write_text("{not json", encoding="utf-8")

    assert SettingsStore(path).load() == Settings()


def test_unknown_fields_are_ignored(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"model": "gpt-4o", "theme": "dark", "version": 1}), encoding="utf-8")

    settings = SettingsStore(path).load()

    assert settings.model == "gpt-4o"


def test_caller_overrides(tmp_path: Path) -> None:
    settings = SettingsStore(tmp_path / "settings.json").load(overrides={"api_key": "sk-runtime", "bogus": 1})

    assert settings.api_key == "sk-runtime"


def test_environment_overrides(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ACTIONFLOW_API_KEY", "sk-env")
    monkeypatch.setenv("ACTIONFLOW_MODEL", "gpt-4.1")
    monkeypatch.setenv("ACTIONFLOW_PARALLEL_TOOLS", "yes")
    monkeypatch.setenv("ACTIONFLOW_MAX_ITERATIONS", "9")
    monkeypatch.setenv("ACTIONFLOW_TEMPERATURE", "0.5")

    settings = SettingsStore(tmp_path / "settings.json").load(overrides={"model": "from-caller"})

    assert settings.api_key == "sk-env"
    assert settings.model == "gpt-4.1"
    assert settings.parallel_tools is True
    assert settings.max_iterations == 9
    assert settings.temperature == 0.5


def test_invalid_numeric_environment_values_are_ignored(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ACTIONFLOW_MAX_RETRIES", "many")
    monkeypatch.setenv("ACTIONFLOW_REQUEST_TIMEOUT", "slow")

    settings = SettingsStore(tmp_path / "settings.json").load()

    assert settings.max_retries == Settings().max_retries
    assert settings.request_timeout == Settings().request_timeout


def test_budget_overlays_configured_caps() -> None:
    settings = Settings(max_tool_calls_total=4)

    assert settings.budget() == ExecutionBudget(max_iterations=5, max_tool_calls_total=4, max_consecutive_errors=3)
    assert settings.budget(ExecutionMode.DELEGATED) == ExecutionBudget(
        max_iterations=10, max_tool_calls_total=4, max_consecutive_errors=3
    )


def test_controller_config() -> None:
    default = Settings().controller_config()
    capped = replace(Settings(), max_iterations=2, parallel_tools=True, temperature=0.1).controller_config()

    assert default.budget is None
    assert default.mode == ExecutionMode.TOOL_LOOP
    assert capped.budget == ExecutionBudget(max_iterations=2)
    assert capped.parallel_tools is True
    assert capped.chat.temperature == 0.1


def test_client_settings_build_a_provider() -> None:
    settings = Settings(api_key="sk-test", native_tools=False, vision=True)

    provider = AIClient(settings.client_settings())

    assert provider.capabilities == ProviderCapabilities(native_tools=False, streaming=True, vision=True)
    assert provider.settings.api_key == "sk-test"


def test_invoker_config() -> None:
    config = Settings(tool_timeout=5.0, debug_logging=True).invoker_config()

    assert config.default_timeout == 5.0
    assert config.log_arguments is True


@pytest.mark.parametrize(
    ("secret", "expected"),
    [("", ""), ("abc", "***"), ("sk-123456", "sk*****56")],
)
def test_redact_secret(secret: str, expected: str) -> None:
    assert redact_secret(secret) == expected


def test_tool_limit_reaches_controller_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ACTIONFLOW_MAX_TOOLS_PER_PROMPT", "4")

    settings = SettingsStore(tmp_path / "settings.json").load()

    assert Settings().controller_config().max_tools_per_prompt is None
    assert settings.max_tools_per_prompt == 4
    assert settings.controller_config().max_tools_per_prompt == 4
