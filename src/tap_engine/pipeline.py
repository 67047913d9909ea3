"""Real-time tap recognition pipeline: estimator results -> features -> events."""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Optional

import numpy as np

from tap_engine.analyzers import Analyzer
from tap_engine.config import (
    COORDINATE_SYSTEMS,
    ConfigError,
    PipelineConfig,
    build_analyzers,
    build_extractors,
    build_preprocessors,
)
from tap_engine.events import EventBus, EventHistory, WILDCARD, monotonic_ms
from tap_engine.extractors import FeatureExtractor
from tap_engine.features import FeatureStore
from tap_engine.preprocessors import Preprocessor
from tap_engine.types import LEFT, RIGHT, Event, Frame, Hand

logger = logging.getLogger("tap_engine.pipeline")


@dataclass
class HandInfo:
    """A hand seen in the most recent frame."""
    handedness: str
    confidence: float
    landmark_count: int


@dataclass
class PipelineStatus:
    """Runtime statistics."""
    frame_count: int
    fps: float
    avg_processing_ms: float
    hands: dict[str, HandInfo] = field(default_factory=dict)
    skipped_frames: int = 0
    total_events: int = 0
    coordinate_system: str = "camera"

    @property
    def hand_count(self) -> int:
        return len(self.hands)


def _get(obj: Any, name: str, default=None):
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def _landmark_array(raw: Any) -> np.ndarray:
    """(N, 3) array from a MediaPipe NormalizedLandmarkList, a list of
    landmark objects/dicts or an array-like."""
    points = _get(raw, "landmark", raw)
    rows = []
    for p in points:
        if isinstance(p, dict):
            rows.append((p.get("x", np.nan), p.get("y", np.nan), p.get("z", 0.0)))
        elif hasattr(p, "x"):
            rows.append((p.x, p.y, getattr(p, "z", 0.0)))
        else:
            rows.append(tuple(p))
    return np.asarray(rows, dtype=np.float64).reshape(-1, 3)


def _handedness(raw: Any) -> tuple[str, float]:
    if raw is None:
        return RIGHT, 1.0
    if isinstance(raw, str):
        return raw, 1.0
    classification = _get(raw, "classification")
    if classification:
        raw = classification[0]
    label = _get(raw, "label", RIGHT)
    score = _get(raw, "score", 1.0)
    return str(label), float(score)


def _mirror(hand: Hand) -> Hand:
    landmarks = hand.landmarks.copy()
    landmarks[:, 0] = 1.0 - landmarks[:, 0]
    handedness = {LEFT: RIGHT, RIGHT: LEFT}.get(hand.handedness, hand.handedness)
    return Hand(landmarks=landmarks, handedness=handedness, confidence=hand.confidence)


def frame_from_results(results: Any, timestamp: float, coordinate_system: str = "camera") -> Frame:
    """Convert one hand-pose estimator result into a Frame.

    Accepts MediaPipe ``Hands.process`` results (``multi_hand_landmarks`` and
    ``multi_handedness``), the same structure as a dict, or
    ``{"hands": [{"landmarks": [...], "handedness": "Left", "score": 0.9}]}``.
    In ``selfie`` coordinates x is mirrored and handedness labels swapped.
    """
    hands: list[Hand] = []
    if results is not None:
        explicit = _get(results, "hands")
        if explicit is not None:
            for entry in explicit:
                label, score = _handedness(entry.get("handedness"))
                hands.append(Hand(
                    landmarks=_landmark_array(entry["landmarks"]),
                    handedness=label,
                    confidence=float(entry.get("score", score)),
                ))
        else:
            landmark_lists = _get(results, "multi_hand_landmarks") or []
            handedness_list = _get(results, "multi_handedness") or []
            for i, raw in enumerate(landmark_lists):
                label, score = _handedness(handedness_list[i] if i < len(handedness_list) else None)
                hands.append(Hand(landmarks=_landmark_array(raw), handedness=label, confidence=score))

    if coordinate_system == "selfie":
        hands = [_mirror(h) for h in hands]
    return Frame(hands=hands, timestamp=timestamp)


class TapPipeline:
    """End-to-end pipeline: estimator results -> preprocess -> extract -> analyze.

    Owns one FeatureStore, EventHistory and EventBus and passes them to every
    component. Extraction and analysis run only on frames holding exactly
    one hand; other frames still go through preprocessing and update the
    status.

    Usage:
        pipeline = TapPipeline.with_defaults()
        pipeline.bus.on("max_finger_peak_detected", on_tap)
        for results in estimator_results:
            pipeline.process_results(results)
    """

    def __init__(
        self,
        coordinate_system: str = "camera",
        feature_history: int = 100,
        event_history: int = 100,
    ):
        if coordinate_system not in COORDINATE_SYSTEMS:
            raise ConfigError(f"coordinate_system must be one of {COORDINATE_SYSTEMS}")
        self.coordinate_system = coordinate_system
        self._last_timestamp: Optional[float] = None
        self.store = FeatureStore(max_history=feature_history)
        self.history = EventHistory(max_size=event_history, clock=self.clock)
        self.bus = EventBus(self.history)

        self.preprocessors: list[Preprocessor] = []
        self.extractors: list[FeatureExtractor] = []
        self.analyzers: list[Analyzer] = []

        self._current_frame: Optional[Frame] = None
        self._frame_times: deque = deque(maxlen=30)
        self._timestamps: deque = deque(maxlen=30)
        self._frame_count = 0
        self._skipped = 0
        self._total_events = 0

    @classmethod
    def from_config(cls, config: PipelineConfig) -> TapPipeline:
        config.validate()
        pipeline = cls(
            coordinate_system=config.coordinate_system,
            feature_history=config.feature_history,
            event_history=config.event_history,
        )
        for preprocessor in build_preprocessors(config):
            pipeline.add_preprocessor(preprocessor)
        for extractor in build_extractors(config):
            pipeline.add_extractor(extractor)
        for analyzer in build_analyzers(config, pipeline.store, pipeline.bus):
            pipeline.add_analyzer(analyzer)
        return pipeline

    @classmethod
    def with_defaults(cls, coordinate_system: str = "camera") -> TapPipeline:
        """Center + normalise preprocessing, every extractor and the phalanx tap analyzer."""
        return cls.from_config(PipelineConfig(coordinate_system=coordinate_system))

    def add_preprocessor(self, preprocessor: Preprocessor):
        self.preprocessors.append(preprocessor)

    def clear_preprocessors(self):
        self.preprocessors.clear()

    def add_extractor(self, extractor: FeatureExtractor):
        self.extractors.append(extractor)

    def add_analyzer(self, analyzer: Analyzer):
        self.analyzers.append(analyzer)

    def clock(self) -> float:
        """Timestamp of the last processed frame, in ms.

        Event history windows are measured on this clock so they share the
        time base of the frames. Before the first frame it is monotonic ms.
        """
        if self._last_timestamp is None:
            return monotonic_ms()
        return self._last_timestamp

    @property
    def current_frame(self) -> Optional[Frame]:
        """The last frame after preprocessing."""
        return self._current_frame

    def process_results(self, results: Any, timestamp: Optional[float] = None) -> list[Event]:
        """Convert raw estimator results and process them. Timestamp in ms."""
        ts = monotonic_ms() if timestamp is None else timestamp
        return self.process_frame(frame_from_results(results, ts, self.coordinate_system))

    def process_frame(self, frame: Frame) -> list[Event]:
        """Run one frame through the pipeline and return the events it produced."""
        t_start = time.perf_counter()
        self._frame_count += 1
        self._timestamps.append(frame.timestamp)
        self._last_timestamp = frame.timestamp

        emitted: list[Event] = []
        collect = emitted.append
        self.bus.on(WILDCARD, collect)
        try:
            for preprocessor in self.preprocessors:
                frame = preprocessor.process(frame)
            self._current_frame = frame

            if len(frame.hands) != 1:
                self._skipped += 1
                logger.debug("Skipping extraction: %d hands in frame", len(frame.hands))
            else:
                self._extract(frame)
                hand = frame.hands[0].handedness
                for analyzer in self.analyzers:
                    analyzer.process(frame.timestamp, hand)
        finally:
            self.bus.off(WILDCARD, collect)

        self._total_events += len(emitted)
        self._frame_times.append(time.perf_counter() - t_start)
        return emitted

    def _extract(self, frame: Frame):
        for extractor in self.extractors:
            for feature in extractor.process(frame, self.store):
                self.store.set_feature(feature)

    @property
    def status(self) -> PipelineStatus:
        if self._frame_times:
            avg_ms = sum(self._frame_times) / len(self._frame_times) * 1000
        else:
            avg_ms = 0.0

        fps = 0.0
        if len(self._timestamps) > 1:
            span = self._timestamps[-1] - self._timestamps[0]
            if span > 0:
                fps = (len(self._timestamps) - 1) * 1000.0 / span

        hands = {}
        if self._current_frame is not None:
            for hand in self._current_frame.hands:
                hands[hand.handedness] = HandInfo(hand.handedness, hand.confidence, hand.landmark_count)

        return PipelineStatus(
            frame_count=self._frame_count,
            fps=fps,
            avg_processing_ms=avg_ms,
            hands=hands,
            skipped_frames=self._skipped,
            total_events=self._total_events,
            coordinate_system=self.coordinate_system,
        )

    def reset(self):
        """Clear features, events and all component state. Listeners are kept."""
        self.store.clear()
        self.history.clear()
        for component in (*self.preprocessors, *self.extractors, *self.analyzers):
            component.reset()
        self._current_frame = None
        self._frame_times.clear()
        self._last_timestamp = None
        self._timestamps.clear()
        self._frame_count = 0
        self._skipped = 0
        self._total_events = 0

    def close(self):
        """Detach analyzers from the store."""
        for analyzer in self.analyzers:
            analyzer.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()
