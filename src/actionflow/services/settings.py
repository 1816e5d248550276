"""Settings dataclasses and persistence helpers."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping

from ..client import ClientSettings
from ..orchestration.controller import ControllerConfig
from ..orchestration.tools.invoker import InvokerConfig
from ..orchestration.types import ChatConfig, ExecutionBudget, ExecutionMode, ProviderCapabilities

__all__ = [
    "Settings",
    "SettingsStore",
    "redact_secret",
]

LOGGER = logging.getLogger(__name__)
_SETTINGS_DIR = Path.home() / ".actionflow"
_DEFAULT_SETTINGS_PATH = _SETTINGS_DIR / "settings.json"
_SETTINGS_VERSION = 1
_ENV_OVERRIDES: Mapping[str, str] = {
    "ACTIONFLOW_API_KEY": "api_key",
    "ACTIONFLOW_BASE_URL": "base_url",
    "ACTIONFLOW_MODEL": "model",
    "ACTIONFLOW_ORGANIZATION": "organization",
    "ACTIONFLOW_PROVIDER": "provider",
    "ACTIONFLOW_MODE": "mode",
    "ACTIONFLOW_LOG_LEVEL": "log_level",
}
_BOOL_ENV_OVERRIDES: Mapping[str, str] = {
    "ACTIONFLOW_DEBUG_LOGGING": "debug_logging",
    "ACTIONFLOW_PARALLEL_TOOLS": "parallel_tools",
    "ACTIONFLOW_NATIVE_TOOLS": "native_tools",
    "ACTIONFLOW_STREAMING": "streaming",
}
_FLOAT_ENV_OVERRIDES: Mapping[str, str] = {
    "ACTIONFLOW_REQUEST_TIMEOUT": "request_timeout",
    "ACTIONFLOW_TEMPERATURE": "temperature",
    "ACTIONFLOW_TOOL_TIMEOUT": "tool_timeout",
}
_INT_ENV_OVERRIDES: Mapping[str, str] = {
    "ACTIONFLOW_MAX_RETRIES": "max_retries",
    "ACTIONFLOW_MAX_ITERATIONS": "max_iterations",
    "ACTIONFLOW_MAX_TOOL_CALLS": "max_tool_calls_total",
    "ACTIONFLOW_MAX_CONSECUTIVE_ERRORS": "max_consecutive_errors",
    "ACTIONFLOW_MAX_HISTORY_MESSAGES": "max_history_messages",
    "ACTIONFLOW_MAX_TOOLS_PER_PROMPT": "max_tools_per_prompt",
}
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
# Never written to disk; supply it through the environment or ``load(overrides=...)``.
_UNPERSISTED_FIELDS = frozenset({"api_key"})


@dataclass(slots=True)
class Settings:
    """User-configurable settings persisted between sessions.

    Budget fields left as ``None`` fall back to the per-mode defaults of
    :class:`ExecutionBudget`.
    """

    provider: str = "openai"
    base_url: str = "https://api.openai.com/v1"
    api_key: str = ""
    model: str = "gpt-4o-mini"
    organization: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    request_timeout: float = 90.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    native_tools: bool = True
    streaming: bool = True
    vision: bool = False
    mode: str = ExecutionMode.TOOL_LOOP
    max_iterations: int | None = None
    max_tool_calls_total: int | None = None
    max_consecutive_errors: int | None = None
    max_history_messages: int = 20
    max_tools_per_prompt: int | None = None
    system_prompt: str = "You are a helpful assistant."
    tool_timeout: float = 30.0
    parallel_tools: bool = False
    strip_thinking: bool = True
    log_level: str = "INFO"
    debug_logging: bool = False
    default_headers: dict[str, str] = field(default_factory=dict)

    def capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(native_tools=self.native_tools, streaming=self.streaming, vision=self.vision)

    def client_settings(self) -> ClientSettings:
        """Settings for :class:`actionflow.client.AIClient`."""
        return ClientSettings(
            base_url=self.base_url,
            api_key=self.api_key,
            model=self.model,
            organization=self.organization,
            request_timeout=self.request_timeout,
            max_retries=self.max_retries,
            retry_min_seconds=self.retry_min_seconds,
            retry_max_seconds=self.retry_max_seconds,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            capabilities=self.capabilities(),
            provider_name=self.provider,
            default_headers=dict(self.default_headers) or None,
            debug_logging=self.debug_logging,
        )

    def budget(self, mode: str | None = None) -> ExecutionBudget:
        """Budget for ``mode`` with any configured caps applied."""
        base = ExecutionBudget.for_mode(mode or self.mode)
        return ExecutionBudget(
            max_iterations=self.max_iterations or base.max_iterations,
            max_tool_calls_total=self.max_tool_calls_total or base.max_tool_calls_total,
            max_consecutive_errors=self.max_consecutive_errors or base.max_consecutive_errors,
        )

    def controller_config(self) -> ControllerConfig:
        configured = (self.max_iterations, self.max_tool_calls_total, self.max_consecutive_errors)
        return ControllerConfig(
            mode=self.mode,
            chat=ChatConfig(model=self.model, temperature=self.temperature, max_tokens=self.max_tokens),
            budget=self.budget() if any(value is not None for value in configured) else None,
            system_prompt=self.system_prompt,
            max_history_messages=self.max_history_messages,
            parallel_tools=self.parallel_tools,
            max_tools_per_prompt=self.max_tools_per_prompt,
            strip_thinking=self.strip_thinking,
        )

    def invoker_config(self) -> InvokerConfig:
        return InvokerConfig(default_timeout=self.tool_timeout, log_arguments=self.debug_logging)


class SettingsStore:
    """Persistence adapter for :class:`Settings`."""

    def __init__(self, path: Path | None = None) -> None:
        self._path = Path(path) if path is not None else _DEFAULT_SETTINGS_PATH

    @property
    def path(self) -> Path:
        """Return the resolved path backing this store."""

        return self._path

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> Settings:
        """Load settings from disk, applying caller/environment overrides when present."""

        payload = self._read_payload()
        settings = Settings()
        if payload:
            data = _filter_fields(payload)
            try:
                settings = Settings(**data)
            except TypeError as exc:
                LOGGER.warning("Settings payload contained unexpected data: %s", exc)
                settings = Settings()
            if payload.get("version") != _SETTINGS_VERSION:
                LOGGER.debug("Settings file %s has version %s", self._path, payload.get("version"))
        LOGGER.debug("Settings loaded from %s (provider=%s, model=%s)", self._path, settings.provider, settings.model)

        if overrides:
            settings = self._apply_overrides(settings, overrides, source="caller")

        return self._apply_env_overrides(settings)

    def save(self, settings: Settings) -> Path:
        """Persist settings to disk with atomic file writes."""

        payload = self._serialize(settings)
        body = json.dumps(payload, indent=2, sort_keys=True)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(body, encoding="utf-8")
        tmp_path.replace(self._path)
        LOGGER.debug("Settings saved to %s", self._path)
        return self._path

    def _serialize(self, settings: Settings) -> Dict[str, Any]:
        data = asdict(settings)
        api_key = data.pop("api_key", "") or ""
        if api_key:
            data["api_key_hint"] = redact_secret(api_key)
        data["version"] = _SETTINGS_VERSION
        return data

    def _read_payload(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            text = self._path.read_text(encoding="utf-8")
            payload = json.loads(text)
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            LOGGER.warning("Settings file %s is not valid JSON: %s", self._path, exc)
            return {}
        if not isinstance(payload, dict):
            LOGGER.warning("Settings file %s does not contain a JSON object", self._path)
            return {}
        return payload

    def _apply_overrides(
        self,
        settings: Settings,
        overrides: Mapping[str, Any],
        *,
        source: str = "runtime",
    ) -> Settings:
        allowed = {field.name for field in fields(Settings)}
        filtered: Dict[str, Any] = {}
        for key, value in overrides.items():
            if key not in allowed or value is None:
                continue
            filtered[key] = value
        if filtered:
            LOGGER.debug("Applying %s settings overrides: %s", source, sorted(filtered))
            settings = replace(settings, **filtered)
        return settings

    def _apply_env_overrides(self, settings: Settings) -> Settings:
        overrides: Dict[str, Any] = {}
        for env_name, field_name in _ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value
        for env_name, field_name in _BOOL_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value.strip().lower() in _TRUE_VALUES
        for env_name, field_name in _INT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = int(value, 10)
            except ValueError:
                LOGGER.warning(
                    "Environment override %s=%s is not a valid integer",
                    env_name,
                    value,
                )
        for env_name, field_name in _FLOAT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = float(value)
            except ValueError:
                LOGGER.warning(
                    "Environment override %s=%s is not a valid float", env_name, value
                )
        if overrides:
            settings = self._apply_overrides(settings, overrides, source="environment")
        return settings


def _filter_fields(payload: Mapping[str, Any]) -> Dict[str, Any]:
    allowed = {field.name for field in fields(Settings)} - _UNPERSISTED_FIELDS
    result: Dict[str, Any] = {}
    for key, value in payload.items():
        if key not in allowed:
            continue
        result[key] = value
    return result


def redact_secret(value: str) -> str:
    stripped = (value or "").strip()
    if not stripped:
        return ""
    if len(stripped) <= 4:
        return "*" * len(stripped)
    return f"{stripped[:2]}{'*' * (len(stripped) - 4)}{stripped[-2:]}"
