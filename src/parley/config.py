"""Configuration resolver: config file, environment variables, then command-line flags."""

from __future__ import annotations

import json
import logging
import os
import stat
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Mapping

import yaml

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "anthropic:claude-3-5-sonnet-latest"
DEFAULT_CONFIG_NAME = "config.json"

PROVIDERS = ("anthropic", "openai", "google", "ollama")

# Checked in order; the first non-empty variable wins.
_PROVIDER_ENV_KEYS: dict[str, tuple[str, ...]] = {
    "openai": ("OPENAI_API_KEY",),
    "anthropic": ("ANTHROPIC_API_KEY",),
    # AI Studio calls the same credential GEMINI_API_KEY
    "google": ("GOOGLE_API_KEY", "GEMINI_API_KEY"),
}


class ConfigLoadError(Exception):
    """Raised when a config file cannot be read, parsed or created."""


@dataclass(frozen=True)
class ProviderConfig:
    api_key: str = ""
    base_url: str = ""
    default_model: str = ""


@dataclass(frozen=True)
class ToolServerConfig:
    name: str
    command: str = ""
    args: list[str] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)
    url: str = ""
    headers: list[str] = field(default_factory=list)
    interface: str = ""  # "memory", "rag" or empty

    @property
    def transport(self) -> str:
        return "sse" if self.url else "stdio"


@dataclass(frozen=True)
class EffectiveConfig:
    log_file_path: str = ""
    model: str = ""
    message_window: int = 0
    debug_mode: bool = False
    system_instruction: str = ""
    anthropic: ProviderConfig = field(default_factory=ProviderConfig)
    openai: ProviderConfig = field(default_factory=ProviderConfig)
    google: ProviderConfig = field(default_factory=ProviderConfig)
    ollama: ProviderConfig = field(default_factory=ProviderConfig)
    tool_servers: dict[str, ToolServerConfig] = field(default_factory=dict)

    def provider(self, name: str) -> ProviderConfig:
        if name not in PROVIDERS:
            raise KeyError(name)
        return getattr(self, name)


@dataclass
class ConfigFlags:
    """Values supplied on the command line. Empty values mean "not given"."""

    message_window: int = 0
    model: str = ""
    debug: bool = False
    openai_url: str = ""
    anthropic_url: str = ""
    openai_api_key: str = ""
    anthropic_api_key: str = ""
    google_api_key: str = ""


# ---------------------------------------------------------------------------
# File parsing
# ---------------------------------------------------------------------------


def _str(raw: Mapping[str, Any], key: str, where: str) -> str:
    value = raw.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ConfigLoadError(f"'{where}{key}' must be a string")
    return value


def _parse_provider(raw: Any, name: str) -> ProviderConfig:
    if raw is None:
        return ProviderConfig()
    if not isinstance(raw, dict):
        raise ConfigLoadError(f"'{name}' must be an object")
    where = f"{name}."
    return ProviderConfig(
        api_key=_str(raw, "api_key", where),
        base_url=_str(raw, "base_url", where),
        default_model=_str(raw, "default_model", where),
    )


def _parse_tool_server(name: str, raw: Any) -> ToolServerConfig:
    if not isinstance(raw, dict):
        raise ConfigLoadError(f"mcpServers.{name} must be an object")
    where = f"mcpServers.{name}."
    args = raw.get("args") or []
    headers = raw.get("headers") or []
    if not isinstance(args, list) or not isinstance(headers, list):
        raise ConfigLoadError(f"'{where}args' and '{where}headers' must be lists")
    env_raw = raw.get("env") or {}
    if not isinstance(env_raw, dict):
        raise ConfigLoadError(f"'{where}env' must be an object")
    env = {str(k): os.path.expandvars(str(v)) for k, v in env_raw.items()}

    server = ToolServerConfig(
        name=name,
        command=_str(raw, "command", where),
        args=[str(a) for a in args],
        env=env,
        url=_str(raw, "url", where),
        headers=[str(h) for h in headers],
        interface=_str(raw, "interface", where),
    )
    if not server.command and not server.url:
        raise ConfigLoadError(f"mcpServers.{name} needs either 'command' or 'url'")
    return server


def parse_config(raw: Mapping[str, Any]) -> EffectiveConfig:
    """Build a config from the decoded file contents."""
    window = raw.get("message_window", 0) or 0
    if isinstance(window, bool) or not isinstance(window, int) or window < 0:
        raise ConfigLoadError("'message_window' must be a non-negative integer")

    debug_mode = raw.get("debug_mode", False)
    if debug_mode is None:
        debug_mode = False
    if not isinstance(debug_mode, bool):
        raise ConfigLoadError("'debug_mode' must be true or false")

    servers_raw = raw.get("mcpServers") or {}
    if not isinstance(servers_raw, dict):
        raise ConfigLoadError("'mcpServers' must be an object")

    return EffectiveConfig(
        log_file_path=_str(raw, "log_file_path", ""),
        model=_str(raw, "model", ""),
        message_window=window,
        debug_mode=debug_mode,
        system_instruction=_str(raw, "system_instruction", ""),
        anthropic=_parse_provider(raw.get("anthropic"), "anthropic"),
        openai=_parse_provider(raw.get("openai"), "openai"),
        google=_parse_provider(raw.get("google"), "google"),
        ollama=_parse_provider(raw.get("ollama"), "ollama"),
        tool_servers={name: _parse_tool_server(name, srv) for name, srv in servers_raw.items()},
    )


def dump_config(config: EffectiveConfig) -> dict[str, Any]:
    """Inverse of :func:`parse_config`."""
    data: dict[str, Any] = {
        "log_file_path": config.log_file_path,
        "model": config.model,
        "message_window": config.message_window,
        "debug_mode": config.debug_mode,
        "system_instruction": config.system_instruction,
    }
    for name in PROVIDERS:
        p = config.provider(name)
        data[name] = {"api_key": p.api_key, "base_url": p.base_url, "default_model": p.default_model}
    servers: dict[str, Any] = {}
    for name, srv in config.tool_servers.items():
        entry: dict[str, Any] = {}
        if srv.url:
            entry["url"] = srv.url
            entry["headers"] = list(srv.headers)
        else:
            entry["command"] = srv.command
            entry["args"] = list(srv.args)
            if srv.env:
                entry["env"] = dict(srv.env)
        if srv.interface:
            entry["interface"] = srv.interface
        servers[name] = entry
    data["mcpServers"] = servers
    return data


def _is_yaml(path: Path) -> bool:
    return path.suffix.lower() in (".yaml", ".yml")


def load_config_file(path: Path) -> EffectiveConfig:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigLoadError(f"cannot read {path}: {e}") from e
    try:
        raw = yaml.safe_load(text) if _is_yaml(path) else json.loads(text or "{}")
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigLoadError(f"cannot parse {path}: {e}") from e
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigLoadError(f"{path} must contain an object at the top level")
    return parse_config(raw)


def write_default_config(path: Path) -> EffectiveConfig:
    """Create ``path`` holding the minimal default configuration and return it."""
    config = EffectiveConfig(model=DEFAULT_MODEL)
    data = dump_config(config)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            if _is_yaml(path):
                yaml.safe_dump(data, f, sort_keys=False)
            else:
                json.dump(data, f, indent=2)
                f.write("\n")
    except OSError as e:
        raise ConfigLoadError(f"cannot create {path}: {e}") from e
    try:
        path.chmod(stat.S_IRUSR | stat.S_IWUSR)  # 0600, the file holds API keys
    except OSError:
        pass  # May fail on Windows or non-owned files
    logger.info("Created default config file at %s", path)
    return config


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


def _load_base(config_path: Path | None, default_path: Path) -> EffectiveConfig:
    if config_path is None:
        if not default_path.exists():
            logger.debug("No config file at %s, starting from an empty config", default_path)
            return EffectiveConfig()
        config_path = default_path
    if not config_path.exists():
        return write_default_config(config_path)
    logger.debug("Loading config from %s", config_path)
    return load_config_file(config_path)


def _apply_env(config: EffectiveConfig, environ: Mapping[str, str]) -> EffectiveConfig:
    updates: dict[str, ProviderConfig] = {}
    for name, keys in _PROVIDER_ENV_KEYS.items():
        current = config.provider(name)
        if current.api_key:
            continue
        for key in keys:
            value = environ.get(key, "")
            if value:
                updates[name] = replace(current, api_key=value)
                break
    return replace(config, **updates) if updates else config


def _apply_flags(config: EffectiveConfig, flags: ConfigFlags) -> EffectiveConfig:
    changes: dict[str, Any] = {}
    if flags.debug:
        changes["debug_mode"] = True
    if flags.message_window > 0:
        changes["message_window"] = flags.message_window
    if flags.model:
        changes["model"] = flags.model

    openai = config.openai
    if flags.openai_url:
        openai = replace(openai, base_url=flags.openai_url)
    if flags.openai_api_key:
        openai = replace(openai, api_key=flags.openai_api_key)
    anthropic = config.anthropic
    if flags.anthropic_url:
        anthropic = replace(anthropic, base_url=flags.anthropic_url)
    if flags.anthropic_api_key:
        anthropic = replace(anthropic, api_key=flags.anthropic_api_key)
    google = config.google
    if flags.google_api_key:
        google = replace(google, api_key=flags.google_api_key)

    return replace(config, openai=openai, anthropic=anthropic, google=google, **changes)


def resolve_config(
    flags: ConfigFlags | None = None,
    config_path: Path | None = None,
    *,
    environ: Mapping[str, str] | None = None,
    default_path: Path | None = None,
) -> EffectiveConfig:
    """Merge the config file, environment and flags into one effective config.

    Precedence is flag > file > environment > default. A source only takes
    effect with a non-empty value, so an empty flag never clears anything.
    """
    flags = flags or ConfigFlags()
    environ = os.environ if environ is None else environ
    default_path = default_path or Path(DEFAULT_CONFIG_NAME)

    config = _load_base(config_path, default_path)
    config = _apply_env(config, environ)
    config = _apply_flags(config, flags)
    if not config.model:
        config = replace(config, model=DEFAULT_MODEL)
    return config
