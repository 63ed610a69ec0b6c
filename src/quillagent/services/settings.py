"""Settings dataclasses and persistence helpers."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping

from ..ai.client import ClientSettings

__all__ = [
    "Settings",
    "SettingsStore",
    "ToolTimeoutSettings",
    "redact_secret",
]

LOGGER = logging.getLogger(__name__)
_SETTINGS_DIR = Path.home() / ".quillagent"
_DEFAULT_SETTINGS_PATH = _SETTINGS_DIR / "settings.json"
_SETTINGS_VERSION = 1
_ENV_OVERRIDES: Mapping[str, str] = {
    "QUILL_API_KEY": "api_key",
    "QUILL_BASE_URL": "base_url",
    "QUILL_MODEL": "model",
    "QUILL_ORGANIZATION": "organization",
}
_BOOL_ENV_OVERRIDES: Mapping[str, str] = {
    "QUILL_DEBUG_LOGGING": "debug_logging",
    "QUILL_PARALLEL_TOOL_CALLS": "parallel_tool_calls",
}
_FLOAT_ENV_OVERRIDES: Mapping[str, str] = {
    "QUILL_REQUEST_TIMEOUT": "request_timeout",
    "QUILL_TEMPERATURE": "temperature",
    "QUILL_IDENTITY_TIMEOUT": "identity_timeout",
}
_INT_ENV_OVERRIDES: Mapping[str, str] = {
    "QUILL_MAX_PASSES": "max_passes",
    "QUILL_MAX_COMPLETION_TOKENS": "max_completion_tokens",
}
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}


@dataclass(slots=True)
class ToolTimeoutSettings:
    """Wall-clock limits (seconds) for a whole tool execution, retries included."""

    default: float = 120.0
    per_tool: dict[str, float] = field(
        default_factory=lambda: {"content_write": 300.0, "source_ingest": 180.0}
    )

    def for_tool(self, name: str) -> float:
        return self.per_tool.get(name, self.default)


@dataclass(slots=True)
class Settings:
    """Runtime settings for the chat agent."""

    base_url: str = "https://api.openai.com/v1"
    api_key: str = ""
    model: str = "gpt-4.1-mini"
    organization: str | None = None
    temperature: float = 0.6
    max_completion_tokens: int | None = 2200
    request_timeout: float = 90.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    max_passes: int = 5
    parallel_tool_calls: bool = True
    tool_max_attempts: int = 3
    tool_retry_min_seconds: float = 0.25
    tool_retry_max_seconds: float = 2.0
    identity_timeout: float = 5.0
    debug_logging: bool = False
    default_headers: dict[str, str] = field(default_factory=dict)
    metadata: dict[str, str] = field(default_factory=dict)
    tool_timeouts: ToolTimeoutSettings = field(default_factory=ToolTimeoutSettings)

    def client_settings(self) -> ClientSettings:
        """Return the subset of settings consumed by the model endpoint client."""

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
            max_completion_tokens=self.max_completion_tokens,
            default_headers=dict(self.default_headers) or None,
            metadata=dict(self.metadata) or None,
            debug_logging=self.debug_logging,
        )


def redact_secret(value: str | None) -> str:
    """Return a log-safe rendition of a secret such as an API key."""

    if not value:
        return ""
    if len(value) <= 8:
        return "***"
    return f"{value[:3]}...{value[-4:]}"


class SettingsStore:
    """Persistence adapter for :class:`Settings`.

    The API key is only ever read from the environment or runtime overrides; it
    is stripped before settings are written to disk.
    """

    def __init__(self, path: Path | None = None) -> None:
        self._path = path or _DEFAULT_SETTINGS_PATH

    @property
    def path(self) -> Path:
        """Return the resolved path backing this store."""

        return self._path

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> Settings:
        """Load settings from disk, applying runtime/environment overrides when present."""

        payload = self._read_payload()
        settings = Settings()

        if payload:
            payload.pop("api_key", None)
            data = _filter_fields(payload)
            timeouts = data.get("tool_timeouts")
            if isinstance(timeouts, Mapping):
                try:
                    data["tool_timeouts"] = ToolTimeoutSettings(**timeouts)
                except TypeError:
                    data["tool_timeouts"] = ToolTimeoutSettings()
            try:
                settings = Settings(**data)
            except TypeError as exc:
                LOGGER.warning("Settings payload contained unexpected data: %s", exc)
                settings = Settings()

        if payload and payload.get("version") != _SETTINGS_VERSION:
            LOGGER.info(
                "Settings file %s has version %s; expected %s",
                self._path,
                payload.get("version"),
                _SETTINGS_VERSION,
            )

        if overrides:
            settings = self._apply_overrides(settings, overrides, source="runtime")

        settings = self._apply_env_overrides(settings)
        LOGGER.debug(
            "Settings resolved: model=%s base_url=%s api_key=%s max_passes=%s",
            settings.model,
            settings.base_url,
            redact_secret(settings.api_key),
            settings.max_passes,
        )
        return settings

    def save(self, settings: Settings) -> Path:
        """Persist settings to disk with atomic file writes."""

        data = asdict(settings)
        data.pop("api_key", None)
        data["version"] = _SETTINGS_VERSION
        body = json.dumps(data, indent=2, sort_keys=True)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(body, encoding="utf-8")
        tmp_path.replace(self._path)
        LOGGER.debug("Settings saved to %s", self._path)
        return self._path

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
            LOGGER.warning("Settings file %s does not contain an object", self._path)
            return {}
        return payload

    def _apply_overrides(
        self,
        settings: Settings,
        overrides: Mapping[str, Any],
        *,
        source: str,
    ) -> Settings:
        allowed = {item.name for item in fields(Settings)}
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
    allowed = {item.name for item in fields(Settings)}
    return {key: value for key, value in payload.items() if key in allowed}
