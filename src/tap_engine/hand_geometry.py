"""Whole-hand geometry: size reference and orientation in space."""

from __future__ import annotations

import math
from typing import Optional

import numpy as np

from tap_engine.extractors import FeatureExtractor, distance_3d
from tap_engine.features import FeatureStore
from tap_engine.types import (
    INDEX_DIP,
    INDEX_MCP,
    INDEX_PIP,
    INDEX_TIP,
    MIDDLE_MCP,
    PINKY_MCP,
    WRIST,
    Feature,
    FeatureDisplay,
    Frame,
)


class HandSize(FeatureExtractor):
    """Reference hand length and index finger length relative to it.

    ``hand_reference_length`` is wrist to middle MCP. ``index_raw_length`` sums
    the three index segments. ``normalized_index_length`` is their ratio,
    emitted only when it falls inside ``ratio_range``.
    """

    name = "HandSize"

    def __init__(self, ratio_range: tuple[float, float] = (0.2, 1.5), **kwargs):
        super().__init__(**kwargs)
        self.ratio_range = ratio_range

    def extract(self, frame: Frame, store: FeatureStore) -> list[Feature]:
        features: list[Feature] = []
        ts = frame.timestamp

        for hand in frame.hands:
            indices = (WRIST, MIDDLE_MCP, INDEX_MCP, INDEX_PIP, INDEX_DIP, INDEX_TIP)
            points = [self.landmark(hand, i) for i in indices]
            if any(p is None for p in points):
                continue
            wrist, middle_mcp, index_mcp, index_pip, index_dip, index_tip = points

            reference = distance_3d(wrist, middle_mcp)
            if reference <= 1e-6:
                continue
            features.append(self.number(
                "hand_reference_length", reference, ts, hand,
                min_max=(0.05, 0.3), display=FeatureDisplay.NUMBER,
            ))

            index_length = (
                distance_3d(index_mcp, index_pip)
                + distance_3d(index_pip, index_dip)
                + distance_3d(index_dip, index_tip)
            )
            features.append(self.number(
                "index_raw_length", index_length, ts, hand, "index",
                min_max=(0.02, 0.5), display=FeatureDisplay.NUMBER,
            ))

            ratio = index_length / reference
            lo, hi = self.ratio_range
            if lo < ratio < hi:
                features.append(self.number(
                    "normalized_index_length", ratio, ts, hand, "index", min_max=(0.2, 0.8),
                ))

        return features


def _unit(v: np.ndarray) -> Optional[np.ndarray]:
    length = float(np.linalg.norm(v))
    if length == 0 or not math.isfinite(length):
        return None
    return v / length


class HandOrientation(FeatureExtractor):
    """Tilt, pan and roll of the hand, each clamped to [-1, 1].

    Tilt and pan are the y and (negated) x components of the palm normal
    (index MCP, middle MCP, pinky MCP plane). Roll is the elevation of the
    wrist->index tip direction out of the image plane, divided by pi/2.
    """

    name = "HandOrientation"

    def extract(self, frame: Frame, store: FeatureStore) -> list[Feature]:
        features: list[Feature] = []
        ts = frame.timestamp

        for hand in frame.hands:
            points = [self.landmark(hand, i) for i in (WRIST, INDEX_MCP, MIDDLE_MCP, PINKY_MCP, INDEX_TIP)]
            if any(p is None for p in points):
                continue
            wrist, index_mcp, middle_mcp, pinky_mcp, index_tip = points

            normal = _unit(np.cross(middle_mcp - index_mcp, pinky_mcp - index_mcp))
            direction = _unit(index_tip - wrist)
            if normal is None or direction is None:
                continue

            tilt = float(np.clip(normal[1], -1.0, 1.0))
            pan = float(np.clip(-normal[0], -1.0, 1.0))
            elevation = math.atan2(direction[2], math.hypot(direction[0], direction[1]))
            roll = float(np.clip(elevation / (math.pi / 2), -1.0, 1.0))

            features.append(self.number("hand_tilt", tilt, ts, hand, min_max=(-1.0, 1.0)))
            features.append(self.number("hand_pan", pan, ts, hand, min_max=(-1.0, 1.0)))
            features.append(self.number("hand_roll", roll, ts, hand, min_max=(-1.0, 1.0)))
            features.append(self.number(
                "hand_orientation_magnitude", math.sqrt(tilt ** 2 + pan ** 2 + roll ** 2), ts, hand,
                min_max=(0.0, 1.73),
            ))

        return features
