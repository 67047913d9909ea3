"""Feature extractors: per-frame geometry computed from hand landmarks.

Extractors only ever see frames holding exactly one hand (the pipeline
gates on it), but each one still loops over ``frame.hands`` so it can be
used on its own. Landmarks that are missing, non-finite or implausibly
far out skip the affected hand or feature for that frame; nothing here
raises on bad input.

Derivative features (``*_speed``, ``*_velocity``) are computed against the
value already held in the FeatureStore under the same key, using the real
elapsed time between the two timestamps.
"""

from __future__ import annotations

import math
from typing import Optional

import numpy as np

from tap_engine.features import FeatureStore
from tap_engine.types import (
    FINGER_JOINTS,
    FINGERS,
    MIDDLE_TIP,
    NUM_LANDMARKS,
    RIGHT,
    TAP_FINGERS,
    THUMB_TIP,
    WRIST,
    Feature,
    FeatureDisplay,
    FeatureType,
    Frame,
    Hand,
)

TWO_PI = 2.0 * math.pi


def distance_3d(a: np.ndarray, b: np.ndarray) -> float:
    return float(np.linalg.norm(a - b))


def angle_2d(v1: np.ndarray, v2: np.ndarray) -> float:
    """Signed angle from v1 to v2 in the image plane, in (-pi, pi]."""
    dot = v1[0] * v2[0] + v1[1] * v2[1]
    cross = v1[0] * v2[1] - v1[1] * v2[0]
    return math.atan2(cross, dot)


def wrap_angle(angle: float) -> float:
    """Wrap an angle difference into (-pi, pi]."""
    wrapped = (angle + math.pi) % TWO_PI - math.pi
    if wrapped == -math.pi:
        return math.pi
    return wrapped


def angular_velocity(previous: float, current: float, dt_seconds: float) -> Optional[float]:
    """Shortest-path angular rate in rad/s, or None when dt is not positive."""
    if dt_seconds <= 0:
        return None
    return wrap_angle(current - previous) / dt_seconds


def handedness_sign(handedness: str) -> float:
    """Mirror factor so left and right hands report angles with the same sign."""
    return -1.0 if handedness == RIGHT else 1.0


def elapsed_seconds(previous: Feature, timestamp: float) -> float:
    return (timestamp - previous.timestamp) / 1000.0


class FeatureExtractor:
    """Base class for extractors.

    Subclasses set ``name`` and implement ``extract``. ``process`` is the
    entry point used by the pipeline and returns nothing when disabled.
    """

    name: str = "FeatureExtractor"

    def __init__(self, enabled: bool = True, coordinate_limit: float = 5.0):
        self._enabled = enabled
        self.coordinate_limit = coordinate_limit

    def process(self, frame: Frame, store: FeatureStore) -> list[Feature]:
        if not self._enabled:
            return []
        return self.extract(frame, store)

    def extract(self, frame: Frame, store: FeatureStore) -> list[Feature]:
        raise NotImplementedError

    def enable(self):
        self._enabled = True

    def disable(self):
        self._enabled = False

    def is_enabled(self) -> bool:
        return self._enabled

    def reset(self):
        """Drop any state carried between frames."""

    def valid_point(self, point: Optional[np.ndarray]) -> bool:
        if point is None or len(point) != 3:
            return False
        if not np.all(np.isfinite(point)):
            return False
        return bool(np.all(np.abs(point) <= self.coordinate_limit))

    def landmark(self, hand: Hand, index: int) -> Optional[np.ndarray]:
        """The landmark at ``index`` if it exists and is plausible."""
        if index >= hand.landmark_count:
            return None
        point = hand.landmarks[index]
        return point if self.valid_point(point) else None

    def number(
        self,
        name: str,
        value: float,
        timestamp: float,
        hand: Hand,
        finger: Optional[str] = None,
        min_max: tuple[float, float] = (0.0, 1.0),
        display: FeatureDisplay = FeatureDisplay.GRAPH,
    ) -> Feature:
        return Feature(
            name=name,
            value=float(value),
            parent=self.name,
            timestamp=timestamp,
            type=FeatureType.NUMBER,
            display=display,
            min_max=min_max,
            hand=hand.handedness,
            finger=finger,
        )

    def speed_against_store(
        self,
        store: FeatureStore,
        name: str,
        value: float,
        timestamp: float,
        hand: Hand,
    ) -> Optional[float]:
        """|delta value| / dt against the stored value of ``name``, or None."""
        previous = store.get_feature(name, hand.handedness)
        if previous is None or not isinstance(previous.value, (int, float)):
            return None
        dt = elapsed_seconds(previous, timestamp)
        if dt <= 0:
            return None
        return abs(value - float(previous.value)) / dt


class DistanceFinger(FeatureExtractor):
    """Thumb tip to fingertip distances.

    Per finger: raw 3D distance, distance divided by hand size (wrist to
    middle fingertip) and the rate of change of the raw distance. Also the
    mean distance over all valid fingers.
    """

    name = "DistanceFinger"

    def extract(self, frame: Frame, store: FeatureStore) -> list[Feature]:
        features: list[Feature] = []
        ts = frame.timestamp

        for hand in frame.hands:
            if hand.landmark_count < NUM_LANDMARKS:
                continue
            thumb = self.landmark(hand, THUMB_TIP)
            if thumb is None:
                continue

            wrist = self.landmark(hand, WRIST)
            middle_tip = self.landmark(hand, MIDDLE_TIP)
            hand_size = distance_3d(wrist, middle_tip) if wrist is not None and middle_tip is not None else 0.0

            distances = []
            for finger in TAP_FINGERS:
                tip = self.landmark(hand, FINGER_JOINTS[finger][3])
                if tip is None:
                    continue

                distance = distance_3d(thumb, tip)
                distances.append(distance)
                name = f"thumb_to_{finger}_distance"

                speed = self.speed_against_store(store, name, distance, ts, hand)
                if speed is not None:
                    features.append(self.number(
                        f"thumb_to_{finger}_distance_speed", speed, ts, hand, finger, min_max=(0.0, 2.0),
                    ))

                features.append(self.number(name, distance, ts, hand, finger, min_max=(0.0, 0.3)))
                features.append(self.number(
                    f"thumb_to_{finger}_normalized",
                    distance / hand_size if hand_size > 0 else 0.0,
                    ts, hand, finger, min_max=(0.0, 1.5),
                ))

            if distances:
                features.append(self.number(
                    "thumb_to_fingers_avg_distance", sum(distances) / len(distances), ts, hand,
                    min_max=(0.0, 0.25),
                ))

        return features


class DistancePhalanx(FeatureExtractor):
    """Thumb tip to one phalanx landmark of every non-thumb finger.

    ``phalanx`` selects the landmark: ``"B"`` the PIP joint, ``"M"`` the DIP
    joint, ``"T"`` the fingertip. Emits ``thumb_to_{finger}{P}_dist`` and
    ``thumb_to_{finger}{P}_distspeed``, the inputs of the phalanx tap
    analyzer.
    """

    PHALANX_JOINT = {"B": 1, "M": 2, "T": 3}

    def __init__(self, phalanx: str = "M", **kwargs):
        super().__init__(**kwargs)
        if phalanx not in self.PHALANX_JOINT:
            raise ValueError(f"phalanx must be one of {sorted(self.PHALANX_JOINT)}, got {phalanx!r}")
        self.phalanx = phalanx
        self.name = f"DistancePhalanx{phalanx}"

    def extract(self, frame: Frame, store: FeatureStore) -> list[Feature]:
        features: list[Feature] = []
        ts = frame.timestamp
        joint = self.PHALANX_JOINT[self.phalanx]

        for hand in frame.hands:
            if hand.landmark_count < NUM_LANDMARKS:
                continue
            thumb = self.landmark(hand, THUMB_TIP)
            if thumb is None:
                continue

            for finger in TAP_FINGERS:
                point = self.landmark(hand, FINGER_JOINTS[finger][joint])
                if point is None:
                    continue

                distance = distance_3d(thumb, point)
                name = f"thumb_to_{finger}{self.phalanx}_dist"

                speed = self.speed_against_store(store, name, distance, ts, hand)
                if speed is not None:
                    features.append(self.number(
                        f"thumb_to_{finger}{self.phalanx}_distspeed", speed, ts, hand, finger, min_max=(0.0, 2.0),
                    ))
                features.append(self.number(name, distance, ts, hand, finger, min_max=(0.0, 0.3)))

        return features


class AngularFinger(FeatureExtractor):
    """Bend angle between the proximal and distal segment of each finger.

    The angle is measured in the image plane from the MCP->PIP segment to
    the DIP->tip segment and mirrored for right hands. Its rate of change is
    wrapped so crossing +/-pi reads as a small step.
    """

    name = "AngularFinger"

    def extract(self, frame: Frame, store: FeatureStore) -> list[Feature]:
        features: list[Feature] = []
        ts = frame.timestamp

        for hand in frame.hands:
            sign = handedness_sign(hand.handedness)
            for finger in FINGERS:
                points = [self.landmark(hand, i) for i in FINGER_JOINTS[finger]]
                if any(p is None for p in points):
                    continue
                base, pip, dip, tip = points

                angle = sign * angle_2d(pip - base, tip - dip)
                name = f"{finger}_angular_value"

                previous = store.get_feature(name, hand.handedness)
                if previous is not None:
                    velocity = angular_velocity(float(previous.value), angle, elapsed_seconds(previous, ts))
                    if velocity is not None:
                        features.append(self.number(
                            f"{finger}_angular_velocity", velocity, ts, hand, finger, min_max=(-20.0, 20.0),
                        ))

                features.append(self.number(name, angle, ts, hand, finger, min_max=(-math.pi, math.pi)))

        return features


class CurvatureFinger(FeatureExtractor):
    """Total bend of each finger along the wrist->MCP->PIP->DIP->tip chain."""

    name = "CurvatureFinger"

    def extract(self, frame: Frame, store: FeatureStore) -> list[Feature]:
        features: list[Feature] = []

        for hand in frame.hands:
            wrist = self.landmark(hand, WRIST)
            if wrist is None:
                continue
            sign = handedness_sign(hand.handedness)

            for finger in FINGERS:
                points = [self.landmark(hand, i) for i in FINGER_JOINTS[finger]]
                if any(p is None for p in points):
                    continue
                chain = [wrist] + points
                segments = [b - a for a, b in zip(chain, chain[1:])]

                curvature = sum(angle_2d(s1, s2) for s1, s2 in zip(segments, segments[1:]))
                min_max = (-1.0, 0.6) if finger == "thumb" else (-0.4, 2.8)
                features.append(self.number(
                    f"{finger}_curvature_value", sign * curvature, frame.timestamp, hand, finger,
                    min_max=min_max,
                ))

        return features
