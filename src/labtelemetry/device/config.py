from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Sequence

DEFAULT_PARAMETER_COMMAND = "SET AMP={amplitude:g} FREQ={frequency:g} OFFSET={offset:g}"
DEFAULT_ACTIONS = {"zero_angle": "ZERO"}


@dataclass
class SamplingConfig:
    outlier_threshold: float = 0.05
    outlier_window: int = 90
    block_size: int = 10
    block_count: int = 90


@dataclass
class DeviceConfig:
    baudrate: int = 115200
    read_timeout: float = 0.2
    chunk_size: int = 256
    encoding: str = "utf-8"
    line_ending: str = "\n"
    command_timeout_sec: float = 2.0
    settle_sec: float = 0.1
    parameter_tolerance: float = 1e-3
    parameter_command: str = DEFAULT_PARAMETER_COMMAND
    actions: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_ACTIONS))
    sampling: SamplingConfig = field(default_factory=SamplingConfig)

    def action_command(self, name: str) -> str:
        try:
            return self.actions[name]
        except KeyError as exc:
            raise ValueError(f"Unknown action '{name}'. Expected one of {sorted(self.actions)}") from exc


def _load_json(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as fh:
        return json.load(fh)


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged: Dict[str, Any] = {**base}
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            merged[key] = _merge(base[key], value)  # type: ignore[index]
        else:
            merged[key] = value
    return merged


def load_config(path: Path | str | None = None, overrides: Sequence[str] | None = None) -> DeviceConfig:
    """
    Load the device configuration from JSON and apply CLI-style overrides.

    A missing *path* yields the built-in defaults. Overrides are dotted
    `key=value` pairs, e.g.:
        ["baudrate=9600", "sampling.outlier_threshold=0.1", "actions.zero_angle=Z0"]
    """
    data: Dict[str, Any] = _load_json(Path(path)) if path is not None else {}
    override_data: Dict[str, Any] = {}
    for override in overrides or []:
        key, raw_value = _parse_override(override)
        _assign_nested(override_data, key, raw_value)
    merged = _merge(data, override_data)
    sampling_data = merged.get("sampling") or {}
    actions = {**DEFAULT_ACTIONS, **{str(k): str(v) for k, v in (merged.get("actions") or {}).items()}}
    cfg = DeviceConfig(
        baudrate=int(merged.get("baudrate", 115200)),
        read_timeout=float(merged.get("read_timeout", 0.2)),
        chunk_size=int(merged.get("chunk_size", 256)),
        encoding=str(merged.get("encoding", "utf-8")),
        line_ending=str(merged.get("line_ending", "\n")),
        command_timeout_sec=float(merged.get("command_timeout_sec", 2.0)),
        settle_sec=float(merged.get("settle_sec", 0.1)),
        parameter_tolerance=float(merged.get("parameter_tolerance", 1e-3)),
        parameter_command=str(merged.get("parameter_command", DEFAULT_PARAMETER_COMMAND)),
        actions=actions,
        sampling=SamplingConfig(
            outlier_threshold=float(sampling_data.get("outlier_threshold", 0.05)),
            outlier_window=int(sampling_data.get("outlier_window", 90)),
            block_size=int(sampling_data.get("block_size", 10)),
            block_count=int(sampling_data.get("block_count", 90)),
        ),
    )
    if cfg.chunk_size < 1:
        raise ValueError("chunk_size must be positive")
    if cfg.sampling.block_size < 1 or cfg.sampling.block_count % cfg.sampling.block_size:
        raise ValueError("sampling.block_count must be a positive multiple of sampling.block_size")
    return cfg


def _parse_override(item: str) -> tuple[str, Any]:
    if "=" not in item:
        raise ValueError(f"Override '{item}' must use key=value syntax")
    key, raw_value = item.split("=", 1)
    key = key.strip()
    if not key:
        raise ValueError("Override key may not be empty")
    return key, _coerce_value(raw_value.strip())


def _coerce_value(raw: str) -> Any:
    if raw.lower() in {"true", "false"}:
        return raw.lower() == "true"
    try:
        if "." in raw or "e" in raw.lower():
            return float(raw)
        return int(raw)
    except ValueError:
        pass
    if (raw.startswith("[") and raw.endswith("]")) or (raw.startswith("{") and raw.endswith("}")):
        return json.loads(raw)
    return raw


def _assign_nested(target: Dict[str, Any], dotted_key: str, value: Any) -> None:
    cursor = target
    parts = dotted_key.split(".")
    for part in parts[:-1]:
        cursor = cursor.setdefault(part, {})
    cursor[parts[-1]] = value
