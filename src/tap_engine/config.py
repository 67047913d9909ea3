"""Pipeline configuration.

Load from YAML:
    config = PipelineConfig.from_yaml("pipeline.yml")
    pipeline = TapPipeline.from_config(config)

Example file:

    coordinate_system: selfie
    preprocessors:
      - id: center
      - id: kalman-filter
        enabled: true
        params: {process_noise: 0.02}
    extractors:
      - distance_finger
      - id: distance_phalanx
        params: {phalanx: B}
    analyzers:
      - id: tap_phalanx
        params: {cooldown_ms: 300}

Everything is validated when the config is loaded or built, never while
frames are being processed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

from tap_engine.analyzers import AVAILABLE_ANALYZERS, Analyzer
from tap_engine.events import EventBus
from tap_engine.extractors import (
    AngularFinger,
    CurvatureFinger,
    DistanceFinger,
    DistancePhalanx,
    FeatureExtractor,
)
from tap_engine.features import FeatureStore
from tap_engine.hand_geometry import HandOrientation, HandSize
from tap_engine.kinematics import KinematicFinger
from tap_engine.preprocessors import AVAILABLE_PREPROCESSORS, Preprocessor

logger = logging.getLogger("tap_engine.config")

COORDINATE_SYSTEMS = ("camera", "selfie")

AVAILABLE_EXTRACTORS: dict[str, type[FeatureExtractor]] = {
    "distance_finger": DistanceFinger,
    "distance_phalanx": DistancePhalanx,
    "angular_finger": AngularFinger,
    "curvature_finger": CurvatureFinger,
    "kinematic_finger": KinematicFinger,
    "hand_size": HandSize,
    "hand_orientation": HandOrientation,
}


class ConfigError(ValueError):
    """Invalid pipeline configuration."""


@dataclass
class ComponentConfig:
    """One preprocessor, extractor or analyzer entry.

    ``enabled`` of None means the component's own default.
    """
    id: str
    enabled: Optional[bool] = None
    params: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        data: dict[str, Any] = {"id": self.id}
        if self.enabled is not None:
            data["enabled"] = self.enabled
        if self.params:
            data["params"] = dict(self.params)
        return data

    @classmethod
    def from_dict(cls, data: Any, section: str) -> ComponentConfig:
        if isinstance(data, str):
            return cls(id=data)
        if not isinstance(data, dict):
            raise ConfigError(f"{section}: entries must be an id or a mapping, got {data!r}")
        if not isinstance(data.get("id"), str):
            raise ConfigError(f"{section}: entry without a string 'id': {data!r}")

        enabled = data.get("enabled")
        if enabled is not None and not isinstance(enabled, bool):
            raise ConfigError(f"{section}.{data['id']}: 'enabled' must be a boolean")
        params = data.get("params") or {}
        if not isinstance(params, dict):
            raise ConfigError(f"{section}.{data['id']}: 'params' must be a mapping")
        return cls(id=data["id"], enabled=enabled, params=dict(params))


def _default_preprocessors() -> list[ComponentConfig]:
    return [ComponentConfig(pid) for pid in AVAILABLE_PREPROCESSORS]


def _default_extractors() -> list[ComponentConfig]:
    return [
        ComponentConfig("distance_finger"),
        ComponentConfig("distance_phalanx", params={"phalanx": "B"}),
        ComponentConfig("distance_phalanx", params={"phalanx": "M"}),
        ComponentConfig("distance_phalanx", params={"phalanx": "T"}),
        ComponentConfig("angular_finger"),
        ComponentConfig("curvature_finger"),
        ComponentConfig("kinematic_finger"),
        ComponentConfig("hand_size"),
        ComponentConfig("hand_orientation"),
    ]


def _default_analyzers() -> list[ComponentConfig]:
    return [ComponentConfig("tap_phalanx")]


@dataclass
class PipelineConfig:
    coordinate_system: str = "camera"
    feature_history: int = 100
    event_history: int = 100
    preprocessors: list[ComponentConfig] = field(default_factory=_default_preprocessors)
    extractors: list[ComponentConfig] = field(default_factory=_default_extractors)
    analyzers: list[ComponentConfig] = field(default_factory=_default_analyzers)

    def validate(self):
        if self.coordinate_system not in COORDINATE_SYSTEMS:
            raise ConfigError(
                f"coordinate_system must be one of {COORDINATE_SYSTEMS}, got {self.coordinate_system!r}"
            )
        for name in ("feature_history", "event_history"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value < 1:
                raise ConfigError(f"{name} must be a positive integer, got {value!r}")

        _check_ids("preprocessors", self.preprocessors, AVAILABLE_PREPROCESSORS)
        _check_ids("extractors", self.extractors, AVAILABLE_EXTRACTORS)
        _check_ids("analyzers", self.analyzers, AVAILABLE_ANALYZERS)

    def to_dict(self) -> dict:
        return {
            "coordinate_system": self.coordinate_system,
            "feature_history": self.feature_history,
            "event_history": self.event_history,
            "preprocessors": [c.to_dict() for c in self.preprocessors],
            "extractors": [c.to_dict() for c in self.extractors],
            "analyzers": [c.to_dict() for c in self.analyzers],
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> PipelineConfig:
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigError(f"Pipeline config must be a mapping, got {type(data).__name__}")

        unknown = set(data) - {
            "coordinate_system", "feature_history", "event_history",
            "preprocessors", "extractors", "analyzers",
        }
        if unknown:
            raise ConfigError(f"Unknown config keys: {sorted(unknown)}")

        config = cls()
        for key in ("coordinate_system", "feature_history", "event_history"):
            if key in data:
                setattr(config, key, data[key])
        for section in ("preprocessors", "extractors", "analyzers"):
            if section not in data:
                continue
            entries = data[section] or []
            if not isinstance(entries, list):
                raise ConfigError(f"{section} must be a list")
            setattr(config, section, [ComponentConfig.from_dict(e, section) for e in entries])

        config.validate()
        return config

    @classmethod
    def from_yaml(cls, path: str | Path) -> PipelineConfig:
        """Load a config from a YAML file."""
        with open(path) as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigError(f"Could not parse {path}: {e}") from e

        config = cls.from_dict(data)
        logger.debug("Loaded pipeline config from %s", path)
        return config

    def to_yaml(self, path: str | Path):
        with open(path, "w") as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)


def _check_ids(section: str, entries: list[ComponentConfig], available: dict):
    for entry in entries:
        if entry.id not in available:
            raise ConfigError(f"{section}: unknown id {entry.id!r} (available: {sorted(available)})")


def _construct(section: str, entry: ComponentConfig, factory, *args, **kwargs):
    try:
        return factory(*args, **kwargs, **entry.params)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{section}.{entry.id}: {e}") from e


def build_preprocessors(config: PipelineConfig) -> list[Preprocessor]:
    result = []
    for entry in config.preprocessors:
        cls, default_enabled = AVAILABLE_PREPROCESSORS[entry.id]
        enabled = default_enabled if entry.enabled is None else entry.enabled
        result.append(_construct("preprocessors", entry, cls, enabled=enabled))
    return result


def build_extractors(config: PipelineConfig) -> list[FeatureExtractor]:
    result = []
    for entry in config.extractors:
        cls = AVAILABLE_EXTRACTORS[entry.id]
        enabled = True if entry.enabled is None else entry.enabled
        result.append(_construct("extractors", entry, cls, enabled=enabled))
    return result


def build_analyzers(config: PipelineConfig, store: FeatureStore, bus: EventBus) -> list[Analyzer]:
    result = []
    for entry in config.analyzers:
        enabled = True if entry.enabled is None else entry.enabled
        result.append(_construct("analyzers", entry, AVAILABLE_ANALYZERS[entry.id], store, bus, enabled=enabled))
    return result
