"""Kinematic finger features: base-to-tip velocity and acceleration."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np

from tap_engine.extractors import FeatureExtractor
from tap_engine.features import FeatureStore
from tap_engine.types import Feature, Frame

# (base, tip) landmark per finger
FINGER_BASE_TIP: dict[str, tuple[int, int]] = {
    "thumb": (1, 4),
    "index": (5, 6),
    "middle": (9, 10),
    "ring": (13, 14),
    "pinky": (17, 18),
}


@dataclass
class _Motion:
    vector: np.ndarray
    speed: float
    timestamp: float


class KinematicFinger(FeatureExtractor):
    """First-difference speed of each finger's base->tip vector, and its rate.

    Emits ``{finger}_base_velocity`` (speed, units/s) and
    ``{finger}_base_acceleration`` (units/s^2). The first sample of a
    finger/hand reports speed 0; the first speed sample reports
    acceleration 0. Samples with non-positive elapsed time are skipped and
    leave the previous state in place.
    """

    name = "KinematicFinger"

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._motion: dict[tuple[str, str], _Motion] = {}
        self._speed: dict[tuple[str, str], tuple[float, float]] = {}  # key -> (speed, ts)

    def extract(self, frame: Frame, store: FeatureStore) -> list[Feature]:
        features: list[Feature] = []
        ts = frame.timestamp

        for hand in frame.hands:
            for finger, (base_idx, tip_idx) in FINGER_BASE_TIP.items():
                base = self.landmark(hand, base_idx)
                tip = self.landmark(hand, tip_idx)
                if base is None or tip is None:
                    continue

                key = (finger, hand.handedness)
                speed = self._update_speed(key, tip - base, ts)
                if speed is None:
                    continue
                features.append(self.number(
                    f"{finger}_base_velocity", speed, ts, hand, finger, min_max=(0.0, 2.0),
                ))

                acceleration = self._update_acceleration(key, speed, ts)
                if acceleration is not None:
                    features.append(self.number(
                        f"{finger}_base_acceleration", acceleration, ts, hand, finger, min_max=(-10.0, 10.0),
                    ))

        return features

    def _update_speed(self, key: tuple[str, str], vector: np.ndarray, timestamp: float) -> Optional[float]:
        previous = self._motion.get(key)
        if previous is None:
            self._motion[key] = _Motion(vector=vector.copy(), speed=0.0, timestamp=timestamp)
            return 0.0

        dt = (timestamp - previous.timestamp) / 1000.0
        if dt <= 0:
            return None

        speed = float(np.linalg.norm((vector - previous.vector) / dt))
        self._motion[key] = _Motion(vector=vector.copy(), speed=speed, timestamp=timestamp)
        return speed

    def _update_acceleration(self, key: tuple[str, str], speed: float, timestamp: float) -> Optional[float]:
        previous = self._speed.get(key)
        self._speed[key] = (speed, timestamp)
        if previous is None:
            return 0.0

        prev_speed, prev_ts = previous
        dt = (timestamp - prev_ts) / 1000.0
        if dt <= 0:
            self._speed[key] = previous
            return None
        return (speed - prev_speed) / dt

    def reset(self):
        self._motion.clear()
        self._speed.clear()
