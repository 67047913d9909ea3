"""Frame preprocessors: chainable, individually enabled landmark transforms.

Each preprocessor maps a Frame to a new Frame and never mutates its input.
The pipeline applies the enabled ones in the order they were added.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from tap_engine.types import FINGERTIPS, INDEX_MCP, PINKY_MCP, WRIST, Frame, Hand

logger = logging.getLogger("tap_engine.preprocessors")


class Preprocessor:
    """Base class for frame preprocessors.

    Subclasses set ``id``/``name`` and implement ``preprocess``. Callers use
    ``process``, which passes the frame through untouched when disabled.
    """

    id: str = "base"
    name: str = "Preprocessor"
    description: str = "No description provided"

    def __init__(self, enabled: bool = True):
        self._enabled = enabled

    def process(self, frame: Frame) -> Frame:
        if not self._enabled:
            return frame
        return self.preprocess(frame)

    def preprocess(self, frame: Frame) -> Frame:
        raise NotImplementedError

    def enable(self):
        self._enabled = True
        logger.debug("%s enabled", self.name)

    def disable(self):
        self._enabled = False
        logger.debug("%s disabled", self.name)

    def is_enabled(self) -> bool:
        return self._enabled

    def reset(self):
        """Drop any temporal state."""


class CenterPreprocessor(Preprocessor):
    """Translates every hand so its wrist sits at the origin."""

    id = "center"
    name = "Center Preprocessor"
    description = "Center on 0,0,0 origin"

    def preprocess(self, frame: Frame) -> Frame:
        hands = []
        for hand in frame.hands:
            if hand.landmark_count == 0:
                hands.append(hand)
                continue
            hands.append(hand.with_landmarks(hand.landmarks - hand.landmarks[WRIST]))
        return frame.with_hands(hands)


class NormalisePreprocessor(Preprocessor):
    """Scales each hand so the index-MCP to pinky-MCP width becomes 0.25."""

    id = "normalise"
    name = "Normalise Preprocessor"
    description = "Normalise hand size (palm width 5-17 scaled by 1/(4d))"

    def preprocess(self, frame: Frame) -> Frame:
        hands = []
        changed = False
        for hand in frame.hands:
            if hand.landmark_count <= PINKY_MCP:
                hands.append(hand)
                continue

            palm_width = float(np.linalg.norm(hand.landmarks[PINKY_MCP] - hand.landmarks[INDEX_MCP]))
            norm = palm_width * 4.0
            if norm == 0 or not np.isfinite(norm):
                hands.append(hand)
                continue
            hands.append(hand.with_landmarks(hand.landmarks / norm))
            changed = True

        if not changed:
            return frame
        return frame.with_hands(hands)


@dataclass
class AxisKalman:
    """Constant-velocity Kalman filter on a single coordinate."""
    position: float
    velocity: float = 0.0
    covariance: float = 1.0
    process_noise: float = 0.01
    measurement_noise: float = 0.1

    def update(self, measurement: float) -> float:
        predicted = self.position + self.velocity
        predicted_cov = self.covariance + self.process_noise

        gain = predicted_cov / (predicted_cov + self.measurement_noise)
        residual = measurement - predicted

        self.position = predicted + gain * residual
        self.velocity = self.velocity + gain * residual
        self.covariance = (1.0 - gain) * predicted_cov
        return self.position


class KalmanFilterPreprocessor(Preprocessor):
    """Smooths fingertip landmarks with one Kalman filter per axis.

    Filter banks are keyed by (handedness, landmark count). When a hand shows
    up with a different landmark count than before, its bank is rebuilt from
    the new measurements.
    """

    id = "kalman-filter"
    name = "Kalman Filter Preprocessor"
    description = "Kalman filtering of fingertips to reduce jitter"

    def __init__(
        self,
        enabled: bool = True,
        process_noise: float = 0.01,
        measurement_noise: float = 0.1,
        landmarks: tuple[int, ...] = FINGERTIPS,
    ):
        super().__init__(enabled)
        self.process_noise = process_noise
        self.measurement_noise = measurement_noise
        self.tracked_landmarks = tuple(landmarks)
        self._filters: dict[tuple[str, int], dict[int, list[AxisKalman]]] = {}

    def preprocess(self, frame: Frame) -> Frame:
        hands = []
        for hand in frame.hands:
            if hand.landmark_count == 0:
                hands.append(hand)
                continue
            hands.append(self._filter_hand(hand))
        return frame.with_hands(hands)

    def _filter_hand(self, hand: Hand) -> Hand:
        key = (hand.handedness, hand.landmark_count)
        bank = self._filters.get(key)
        if bank is None:
            bank = self._init_bank(hand)

        filtered = hand.landmarks.copy()
        for index, axes in bank.items():
            point = hand.landmarks[index]
            if not np.all(np.isfinite(point)):
                continue
            for axis, kf in enumerate(axes):
                filtered[index, axis] = kf.update(float(point[axis]))
        return hand.with_landmarks(filtered)

    def _init_bank(self, hand: Hand) -> dict[int, list[AxisKalman]]:
        # A new topology for this handedness replaces any previous bank
        for stale in [k for k in self._filters if k[0] == hand.handedness]:
            del self._filters[stale]

        bank: dict[int, list[AxisKalman]] = {}
        for index in self.tracked_landmarks:
            if index >= hand.landmark_count:
                continue
            bank[index] = [
                AxisKalman(
                    position=float(value),
                    process_noise=self.process_noise,
                    measurement_noise=self.measurement_noise,
                )
                for value in np.nan_to_num(hand.landmarks[index])
            ]
        self._filters[(hand.handedness, hand.landmark_count)] = bank
        logger.debug(
            "Kalman filters initialised for %s hand (%d landmarks)",
            hand.handedness, hand.landmark_count,
        )
        return bank

    def configure(self, process_noise: float = 0.01, measurement_noise: float = 0.1):
        """Change noise parameters, including on already-running filters."""
        self.process_noise = process_noise
        self.measurement_noise = measurement_noise
        for bank in self._filters.values():
            for axes in bank.values():
                for kf in axes:
                    kf.process_noise = process_noise
                    kf.measurement_noise = measurement_noise

    def reset(self):
        self._filters.clear()

    @property
    def tracked_hands(self) -> list[tuple[str, int]]:
        return list(self._filters)


AVAILABLE_PREPROCESSORS: dict[str, tuple[type[Preprocessor], bool]] = {
    CenterPreprocessor.id: (CenterPreprocessor, True),
    NormalisePreprocessor.id: (NormalisePreprocessor, True),
    KalmanFilterPreprocessor.id: (KalmanFilterPreprocessor, False),
}


def create_preprocessor(preprocessor_id: str, enabled: Optional[bool] = None, **params) -> Preprocessor:
    """Instantiate a registered preprocessor by id.

    ``enabled`` defaults to the registry's default for that id.
    """
    try:
        cls, default_enabled = AVAILABLE_PREPROCESSORS[preprocessor_id]
    except KeyError:
        raise KeyError(f"Unknown preprocessor: {preprocessor_id}") from None
    return cls(enabled=default_enabled if enabled is None else enabled, **params)


def default_preprocessors() -> list[Preprocessor]:
    """One instance of every registered preprocessor, in registry order."""
    return [create_preprocessor(pid) for pid in AVAILABLE_PREPROCESSORS]
