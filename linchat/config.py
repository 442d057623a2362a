"""
Typed configuration model with precedence-based loader.

Precedence (lowest to highest):
    defaults < config file (YAML) < profile < env vars < CLI flags < per-session overrides
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

DEFAULT_CONFIG_PATH = "~/.linchat/config.yaml"


# ---------------------------------------------------------------------------
# Section dataclasses
# ---------------------------------------------------------------------------

@dataclass
class LLMConfig:
    api_base: str = "https://api.openai.com/v1"
    api_key_env: str = "OPENAI_API_KEY"
    model: str = ""
    timeout_seconds: int = 120
    max_retries: int = 2
    models_file: str = "~/.linchat/models.yaml"

    def api_key(self) -> str:
        return os.environ.get(self.api_key_env, "") if self.api_key_env else ""


@dataclass
class ParametersConfig:
    temperature: float | None = 1.0
    top_p: float | None = 0.95
    seed: int | None = None
    reasoning_effort: str | None = None

    def sampling(self) -> dict[str, Any]:
        return {"temperature": self.temperature, "top_p": self.top_p, "seed": self.seed}


@dataclass
class ToolsConfig:
    enabled: list[str] = field(default_factory=list)
    max_iterations: int = 4
    timeout_seconds: float = 30.0
    parallel: bool = True
    plugins_enabled: bool = False
    allow_tools: list[str] = field(default_factory=list)


@dataclass
class ChatConfig:
    custom_instructions: str = ""
    date_context: bool = True
    incognito: bool = False
    generate_titles: bool = False


@dataclass
class StoreConfig:
    history_db: str = "~/.linchat/history.db"


# ---------------------------------------------------------------------------
# Root config
# ---------------------------------------------------------------------------

@dataclass
class LinchatConfig:
    llm: LLMConfig = field(default_factory=LLMConfig)
    parameters: ParametersConfig = field(default_factory=ParametersConfig)
    tools: ToolsConfig = field(default_factory=ToolsConfig)
    chat: ChatConfig = field(default_factory=ChatConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    profiles: dict[str, dict[str, Any]] = field(default_factory=dict)

    _overrides: dict[str, Any] = field(default_factory=dict, repr=False)

    def set_override(self, dotpath: str, value: Any) -> None:
        """Set a per-session override using dot notation (e.g. 'llm.model')."""
        self._overrides[dotpath] = value
        _apply_dotpath(self, dotpath, value)

    def get_override(self, dotpath: str) -> Any | None:
        return self._overrides.get(dotpath)

    def to_dict(self) -> dict:
        d = asdict(self)
        d.pop("_overrides", None)
        return d


class ConfigError(ValueError):
    """A config file or override could not be applied."""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _apply_dotpath(obj: Any, dotpath: str, value: Any) -> None:
    parts = dotpath.split(".")
    for part in parts[:-1]:
        if not hasattr(obj, part):
            raise ConfigError(f"Unknown config section: {part!r} in {dotpath!r}")
        obj = getattr(obj, part)
    if not hasattr(obj, parts[-1]):
        raise ConfigError(f"Unknown config key: {dotpath!r}")
    setattr(obj, parts[-1], value)


def _deep_merge(base: dict, overlay: dict) -> dict:
    merged = dict(base)
    for k, v in overlay.items():
        if k in merged and isinstance(merged[k], dict) and isinstance(v, dict):
            merged[k] = _deep_merge(merged[k], v)
        else:
            merged[k] = v
    return merged


def _coerce(value: str, target_type: type) -> Any:
    """Coerce a string env value to the target type."""
    if target_type is bool:
        return value.lower() in ("1", "true", "yes", "on")
    if target_type is int:
        return int(value)
    if target_type is float:
        return float(value)
    if target_type is list:
        return [s.strip() for s in value.split(",") if s.strip()]
    return value


def _build_section(cls: type, raw: Any) -> Any:
    """Build a dataclass section from a raw dict, ignoring unknown keys."""
    if not isinstance(raw, dict):
        raise ConfigError(f"Section for {cls.__name__} must be a mapping")
    valid_fields = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in raw.items() if k in valid_fields})


# ---------------------------------------------------------------------------
# ENV var mapping
# ---------------------------------------------------------------------------

_ENV_MAP: dict[str, tuple[str, type]] = {
    "LINCHAT_API_BASE":           ("llm.api_base", str),
    "LINCHAT_API_KEY_ENV":        ("llm.api_key_env", str),
    "LINCHAT_MODEL":              ("llm.model", str),
    "LINCHAT_TIMEOUT":            ("llm.timeout_seconds", int),
    "LINCHAT_MAX_RETRIES":        ("llm.max_retries", int),
    "LINCHAT_MODELS_FILE":        ("llm.models_file", str),
    "LINCHAT_TEMPERATURE":        ("parameters.temperature", float),
    "LINCHAT_TOP_P":              ("parameters.top_p", float),
    "LINCHAT_SEED":               ("parameters.seed", int),
    "LINCHAT_REASONING_EFFORT":   ("parameters.reasoning_effort", str),
    "LINCHAT_TOOLS":              ("tools.enabled", list),
    "LINCHAT_MAX_ITERATIONS":     ("tools.max_iterations", int),
    "LINCHAT_TOOL_TIMEOUT":       ("tools.timeout_seconds", float),
    "LINCHAT_PARALLEL_TOOLS":     ("tools.parallel", bool),
    "LINCHAT_PLUGINS_ENABLED":    ("tools.plugins_enabled", bool),
    "LINCHAT_INSTRUCTIONS":       ("chat.custom_instructions", str),
    "LINCHAT_DATE_CONTEXT":       ("chat.date_context", bool),
    "LINCHAT_INCOGNITO":          ("chat.incognito", bool),
    "LINCHAT_GENERATE_TITLES":    ("chat.generate_titles", bool),
    "LINCHAT_HISTORY_DB":         ("store.history_db", str),
}


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

def load_config(
    config_path: str | Path | None = None,
    *,
    profile: str | None = None,
    cli_overrides: dict[str, Any] | None = None,
) -> LinchatConfig:
    """
    Build a LinchatConfig by layering sources in precedence order:

        defaults  <  config file  <  profile  <  env vars  <  CLI flags

    Parameters
    ----------
    config_path : path to YAML config file (optional, missing file is fine)
    profile : name of a profile to apply from the config file
    cli_overrides : dict of dotpath -> value CLI flag overrides; ``None``
        values are skipped so unset flags do not clobber lower layers
    """
    raw: dict[str, Any] = {}

    if config_path is not None:
        p = Path(config_path).expanduser()
        if p.is_file():
            with p.open("r", encoding="utf-8") as f:
                try:
                    file_data = yaml.safe_load(f) or {}
                except yaml.YAMLError as e:
                    raise ConfigError(f"Invalid YAML in {p}: {e}") from e
            if not isinstance(file_data, dict):
                raise ConfigError(f"Config file {p} must contain a mapping")
            raw = _deep_merge(raw, file_data)

    if profile:
        profile_data = (raw.get("profiles") or {}).get(profile)
        if profile_data is None:
            raise ConfigError(f"Unknown profile: {profile!r}")
        raw = _deep_merge(raw, profile_data)

    cfg = LinchatConfig(
        llm=_build_section(LLMConfig, raw.get("llm") or {}),
        parameters=_build_section(ParametersConfig, raw.get("parameters") or {}),
        tools=_build_section(ToolsConfig, raw.get("tools") or {}),
        chat=_build_section(ChatConfig, raw.get("chat") or {}),
        store=_build_section(StoreConfig, raw.get("store") or {}),
        profiles=raw.get("profiles") or {},
    )

    for env_var, (dotpath, target_type) in _ENV_MAP.items():
        val = os.environ.get(env_var)
        if val is not None:
            try:
                _apply_dotpath(cfg, dotpath, _coerce(val, target_type))
            except ValueError as e:
                raise ConfigError(f"Invalid value for {env_var}: {val!r}") from e

    if cli_overrides:
        for dotpath, value in cli_overrides.items():
            if value is not None:
                _apply_dotpath(cfg, dotpath, value)

    return cfg
