"""Core data model: hands, frames, features and events."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Optional, Union

import numpy as np

LEFT = "Left"
RIGHT = "Right"
HAND_SIDES = (LEFT, RIGHT)

FINGERS = ("thumb", "index", "middle", "ring", "pinky")
TAP_FINGERS = ("index", "middle", "ring", "pinky")

# MediaPipe hand landmark indices
WRIST = 0
THUMB_CMC, THUMB_MCP, THUMB_IP, THUMB_TIP = 1, 2, 3, 4
INDEX_MCP, INDEX_PIP, INDEX_DIP, INDEX_TIP = 5, 6, 7, 8
MIDDLE_MCP, MIDDLE_PIP, MIDDLE_DIP, MIDDLE_TIP = 9, 10, 11, 12
RING_MCP, RING_PIP, RING_DIP, RING_TIP = 13, 14, 15, 16
PINKY_MCP, PINKY_PIP, PINKY_DIP, PINKY_TIP = 17, 18, 19, 20

NUM_LANDMARKS = 21
FINGERTIPS = (THUMB_TIP, INDEX_TIP, MIDDLE_TIP, RING_TIP, PINKY_TIP)

# [mcp, pip, dip, tip] per finger; the thumb uses cmc/mcp/ip/tip
FINGER_JOINTS: dict[str, tuple[int, int, int, int]] = {
    "thumb": (THUMB_CMC, THUMB_MCP, THUMB_IP, THUMB_TIP),
    "index": (INDEX_MCP, INDEX_PIP, INDEX_DIP, INDEX_TIP),
    "middle": (MIDDLE_MCP, MIDDLE_PIP, MIDDLE_DIP, MIDDLE_TIP),
    "ring": (RING_MCP, RING_PIP, RING_DIP, RING_TIP),
    "pinky": (PINKY_MCP, PINKY_PIP, PINKY_DIP, PINKY_TIP),
}

FeatureValue = Union[float, bool, str]


class FeatureType(Enum):
    NUMBER = "number"
    BOOL = "bool"
    STRING = "string"


class FeatureDisplay(Enum):
    """How a consumer should render a feature."""
    NUMBER = "Number"
    GRAPH = "Graph"


@dataclass
class Hand:
    """One detected hand: (N, 3) landmarks plus handedness and confidence."""
    landmarks: np.ndarray
    handedness: str
    confidence: float = 1.0

    def __post_init__(self):
        self.landmarks = np.asarray(self.landmarks, dtype=np.float64).reshape(-1, 3)

    @property
    def landmark_count(self) -> int:
        return len(self.landmarks)

    def with_landmarks(self, landmarks: np.ndarray) -> Hand:
        """Return a copy of this hand carrying new landmarks."""
        return replace(self, landmarks=landmarks)


@dataclass
class Frame:
    """A single estimator result: 0-2 hands at a timestamp in milliseconds."""
    hands: list[Hand] = field(default_factory=list)
    timestamp: float = 0.0

    def with_hands(self, hands: list[Hand]) -> Frame:
        return Frame(hands=hands, timestamp=self.timestamp)


@dataclass(frozen=True)
class Feature:
    """A named, timestamped value produced by an extractor.

    ``min_max`` is a display/normalization hint and is never enforced.
    """
    name: str
    value: FeatureValue
    parent: str
    timestamp: float
    type: FeatureType = FeatureType.NUMBER
    display: FeatureDisplay = FeatureDisplay.GRAPH
    min_max: tuple[float, float] = (0.0, 1.0)
    hand: Optional[str] = None
    finger: Optional[str] = None

    @property
    def key(self) -> str:
        return feature_key(self.name, self.hand)


def feature_key(name: str, hand: Optional[str] = None) -> str:
    """Storage key for a feature name, qualified by hand when given."""
    return f"{name}_{hand}" if hand else name


@dataclass
class Event:
    """A named occurrence emitted on the event bus."""
    type: str
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: float = 0.0
    hand: Optional[str] = None
