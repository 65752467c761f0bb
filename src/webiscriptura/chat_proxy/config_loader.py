from __future__ import annotations

import os
import tempfile
from dataclasses import asdict
from pathlib import Path
from typing import Any, Callable, get_type_hints

try:
    import tomllib  # Python 3.11+
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib  # type: ignore[no-redef]

from .config import ProxyConfig

CONFIG_FILE_ENV = "WEBISCRIPTURA_CONFIG_FILE"
ENV_PREFIX = "WEBISCRIPTURA_"
DEFAULT_CONFIG_PATH = Path("configs/webiscriptura.toml")

_SECTION_MAP: dict[str, list[str]] = {
    "server": ["host", "port", "enable_metrics", "log_path", "max_log_bytes"],
    "timeouts": ["backend_timeout_ms"],
    "limits": ["char_budget"],
    "upstream": [
        "default_model",
        "azure_api_version",
        "temperature",
        "top_p",
        "frequency_penalty",
        "presence_penalty",
        "max_tokens",
    ],
    "persona": ["system_prompt"],
}


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _to_int(value: Any) -> int:
    # TOML may hand back 8000.0 for a value typed by hand
    return int(value) if isinstance(value, (int, float)) else int(str(value).strip())


_CASTERS: dict[Any, Callable[[Any], Any]] = {
    bool: _to_bool,
    int: _to_int,
    float: lambda value: float(value),
    str: lambda value: str(value),
}


def _file_fields() -> dict[str, Callable[[Any], Any]]:
    """Caster for every field stored in the config file (all except its path)."""

    hints = get_type_hints(ProxyConfig)
    return {
        key: _CASTERS[hints[key]]
        for keys in _SECTION_MAP.values()
        for key in keys
    }


def _defaults() -> dict[str, Any]:
    data = asdict(ProxyConfig())
    data.pop("config_file_path")
    return data


def _normalize(values: dict[str, Any]) -> dict[str, Any]:
    """Coerce known fields, falling back to the default for bad values."""

    normalized = _defaults()
    for key, caster in _file_fields().items():
        if key not in values:
            continue
        try:
            normalized[key] = caster(values[key])
        except (TypeError, ValueError):
            pass
    return normalized


def _read_config_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with path.open("rb") as fh:
        data = tomllib.load(fh)
    out: dict[str, Any] = {}
    for section, keys in _SECTION_MAP.items():
        section_values = data.get(section)
        if isinstance(section_values, dict):
            out.update({k: section_values[k] for k in keys if k in section_values})
    return out


def _apply_env_overrides(config: dict[str, Any]) -> dict[str, Any]:
    for key, caster in _file_fields().items():
        raw = os.environ.get(f"{ENV_PREFIX}{key.upper()}")
        if raw is None:
            continue
        try:
            config[key] = caster(raw)
        except ValueError:
            # Unparseable override keeps the file/default value
            continue
    return config


def _config_path() -> Path:
    return Path(os.environ.get(CONFIG_FILE_ENV, DEFAULT_CONFIG_PATH)).expanduser()


def _ensure_config_file(path: Path) -> None:
    if not path.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
        write_config(ProxyConfig(), path)


def load_file_config() -> dict[str, Any]:
    path = _config_path()
    _ensure_config_file(path)
    return _normalize(_read_config_file(path))


def load_proxy_config() -> ProxyConfig:
    path = _config_path()
    _ensure_config_file(path)
    values = _apply_env_overrides(_normalize(_read_config_file(path)))
    return ProxyConfig(**values, config_file_path=str(path))


def _toml_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def write_config(config: ProxyConfig, path: Path | None = None) -> None:
    path = Path(path or _config_path()).expanduser()
    values = asdict(config)
    lines: list[str] = [
        "# WebiScriptura chat proxy configuration.",
        "# Generated automatically. Edit values as needed.",
        "# Provider credentials are read from OPENAI_* / AZURE_OPENAI_* variables.",
    ]
    for section, keys in _SECTION_MAP.items():
        lines.append("")
        lines.append(f"[{section}]")
        lines.extend(f"{key} = {_toml_value(values[key])}" for key in keys)

    tmp_fd, tmp_path = tempfile.mkstemp(
        prefix="webiscriptura_config_", suffix=".toml", dir=str(path.parent)
    )
    try:
        with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
            handle.write("\n".join(lines) + "\n")
        Path(tmp_path).replace(path)
    finally:
        try:
            os.unlink(tmp_path)
        except FileNotFoundError:
            pass


def update_config_file(updates: dict[str, Any]) -> ProxyConfig:
    path = _config_path()
    _ensure_config_file(path)
    unknown = sorted(key for key in updates if key not in _file_fields())
    if unknown:
        raise KeyError(f"Unknown configuration field(s): {', '.join(unknown)}")

    values = _normalize({**_read_config_file(path), **updates})
    write_config(ProxyConfig(**values), path)
    return load_proxy_config()


def list_env_overrides() -> dict[str, str]:
    return {
        key: value
        for key, value in os.environ.items()
        if key.startswith(ENV_PREFIX) and key != CONFIG_FILE_ENV
    }
