from __future__ import annotations

import json
import logging
from dataclasses import dataclass, asdict, field
from pathlib import Path
from typing import Any, Optional

import yaml

from .errors import ConfigError
from .strategies.calibrate_aruco import parse_calib_flags
from .strategies.detect_aruco import normalize_dict_name


@dataclass
class CalibConfig:
    session_name: str = "calib"
    device: int | str = 0
    fps: int = 30
    width: int = 0  # 0 keeps the camera's current mode
    height: int = 0
    aruco_dict: str = "4x4_50"
    markers_x: int = 5
    markers_y: int = 7
    marker_length_m: float = 0.04
    marker_separation_m: float = 0.01
    min_frames: int = 20
    wait_ms: int = 10
    output_path: Optional[str] = None
    detector_params_path: Optional[str] = None
    calib_flags: list[str] = field(default_factory=list)
    aspect_ratio: float = 1.0
    max_frames: Optional[int] = None
    show_window: bool = True
    log_path: Optional[str] = None
    log_level: str = "INFO"

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)

    def apply_overrides(self, **kwargs: Any) -> "CalibConfig":
        for key, value in kwargs.items():
            if value is not None and hasattr(self, key):
                setattr(self, key, value)
        return self

    def validate(self) -> "CalibConfig":
        """Raise ConfigError for values that would make a session meaningless."""
        if not self.output_path:
            raise ConfigError("Output calibration file is required")
        if self.markers_x <= 0 or self.markers_y <= 0:
            raise ConfigError(
                f"Board dimensions must be positive, got {self.markers_x}x{self.markers_y}"
            )
        if self.marker_length_m <= 0:
            raise ConfigError(f"marker_length_m must be positive, got {self.marker_length_m}")
        if self.marker_separation_m < 0:
            raise ConfigError(
                f"marker_separation_m must not be negative, got {self.marker_separation_m}"
            )
        if self.min_frames <= 0:
            raise ConfigError(f"min_frames must be positive, got {self.min_frames}")
        if self.wait_ms <= 0:
            raise ConfigError(f"wait_ms must be positive, got {self.wait_ms}")
        if self.aspect_ratio <= 0:
            raise ConfigError(f"aspect_ratio must be positive, got {self.aspect_ratio}")
        if self.max_frames is not None and self.max_frames <= 0:
            raise ConfigError(f"max_frames must be positive, got {self.max_frames}")
        if logging.getLevelName(str(self.log_level).upper()) not in (
            logging.DEBUG, logging.INFO, logging.WARNING, logging.ERROR, logging.CRITICAL
        ):
            raise ConfigError(f"Unknown log level: {self.log_level!r}")
        normalize_dict_name(self.aruco_dict)
        parse_calib_flags(self.calib_flags)
        return self


def _normalize_flags(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [v for v in value.replace(",", " ").split() if v]
    if isinstance(value, (list, tuple, set)):
        return [str(v) for v in value]
    raise ValueError("calib_flags must be a list of flag names")


def _load_yaml(path: Path) -> dict[str, Any]:
    with path.open("r", encoding="utf-8") as fp:
        try:
            data = yaml.safe_load(fp) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML config {path}: {e}") from e
    if not isinstance(data, dict):
        raise ValueError("YAML config root must be a mapping")
    return data


def _coerce(raw: dict[str, Any], key: str, default, kind=None):
    """Read ``key`` from ``raw`` as ``kind``; a missing key gives ``default``."""
    if key not in raw:
        return default
    value = raw[key]
    if value is None:
        raise ConfigError(f"Config key {key!r} has no value")
    if kind is None:
        return value
    try:
        return kind(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Config key {key!r} has invalid value {value!r}") from e


def load_config(path: str | Path) -> CalibConfig:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Config not found: {p}")

    if p.suffix.lower() in {".yaml", ".yml"}:
        raw = _load_yaml(p)
    else:
        with p.open("r", encoding="utf-8") as fp:
            try:
                raw = json.load(fp)
            except json.JSONDecodeError as e:
                raise ConfigError(f"Invalid JSON config {p}: {e}") from e

    if not isinstance(raw, dict):
        raise ValueError("Config root must be a JSON/YAML object")

    cfg = CalibConfig()
    cfg.session_name = _coerce(raw, "session_name", cfg.session_name, str)
    cfg.device = _coerce(raw, "device", cfg.device)
    cfg.fps = _coerce(raw, "fps", cfg.fps, int)
    cfg.width = _coerce(raw, "width", cfg.width, int)
    cfg.height = _coerce(raw, "height", cfg.height, int)
    cfg.aruco_dict = _coerce(raw, "aruco_dict", cfg.aruco_dict)
    cfg.markers_x = _coerce(raw, "markers_x", cfg.markers_x, int)
    cfg.markers_y = _coerce(raw, "markers_y", cfg.markers_y, int)
    cfg.marker_length_m = _coerce(raw, "marker_length_m", cfg.marker_length_m, float)
    cfg.marker_separation_m = _coerce(raw, "marker_separation_m", cfg.marker_separation_m, float)
    cfg.min_frames = _coerce(raw, "min_frames", cfg.min_frames, int)
    cfg.wait_ms = _coerce(raw, "wait_ms", cfg.wait_ms, int)
    # optional keys: an empty value means unset
    cfg.output_path = raw.get("output_path", cfg.output_path)
    if cfg.output_path is not None:
        cfg.output_path = str(cfg.output_path)
    cfg.detector_params_path = raw.get("detector_params_path", cfg.detector_params_path)
    try:
        cfg.calib_flags = _normalize_flags(raw.get("calib_flags", cfg.calib_flags))
    except ValueError as e:
        raise ConfigError(str(e)) from e
    cfg.aspect_ratio = _coerce(raw, "aspect_ratio", cfg.aspect_ratio, float)
    if raw.get("max_frames") is not None:
        cfg.max_frames = _coerce(raw, "max_frames", cfg.max_frames, int)
    cfg.show_window = _coerce(raw, "show_window", cfg.show_window, bool)
    cfg.log_path = raw.get("log_path", cfg.log_path)
    cfg.log_level = _coerce(raw, "log_level", cfg.log_level, str)
    return cfg
