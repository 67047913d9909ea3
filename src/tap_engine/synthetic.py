"""Synthetic hand landmarks for benchmarking and testing without a camera."""

from __future__ import annotations

from typing import Optional

import numpy as np

from tap_engine.types import FINGER_JOINTS, RIGHT, THUMB_TIP, WRIST, Frame, Hand

# (x, y) of mcp/pip/dip/tip per finger for a relaxed open hand, image coordinates
_OPEN_HAND_2D = {
    "thumb": [(0.44, 0.85), (0.40, 0.80), (0.37, 0.75), (0.35, 0.70)],
    "index": [(0.44, 0.70), (0.44, 0.62), (0.44, 0.57), (0.44, 0.53)],
    "middle": [(0.50, 0.70), (0.50, 0.62), (0.50, 0.57), (0.50, 0.53)],
    "ring": [(0.56, 0.70), (0.56, 0.62), (0.56, 0.57), (0.56, 0.53)],
    "pinky": [(0.62, 0.70), (0.62, 0.63), (0.62, 0.59), (0.62, 0.56)],
}

PHALANX_JOINT = {"B": 1, "M": 2, "T": 3}


def open_hand() -> np.ndarray:
    """(21, 3) landmarks of an open hand, wrist at (0.5, 0.9)."""
    landmarks = np.zeros((21, 3), dtype=np.float64)
    landmarks[WRIST] = (0.5, 0.9, 0.0)
    for finger, points in _OPEN_HAND_2D.items():
        for joint, (x, y) in zip(FINGER_JOINTS[finger], points):
            landmarks[joint] = (x, y, 0.0)
    return landmarks


def tap_frames(
    finger: str = "index",
    phalanx: str = "T",
    rest_frames: int = 12,
    interval_ms: float = 50.0,
    start_ms: float = 0.0,
    handedness: str = RIGHT,
    offset: tuple[float, float] = (-0.01, 0.0),
) -> list[Frame]:
    """Frames of one thumb tap onto a phalanx of ``finger``.

    The thumb tip rests, jumps next to the target landmark in one frame,
    retreats over two frames and rests again.
    """
    rest = open_hand()
    target = rest[FINGER_JOINTS[finger][PHALANX_JOINT[phalanx]]].copy()
    target[:2] += offset
    start = rest[THUMB_TIP]

    path = [start] * rest_frames + [target, (start + target) / 2] + [start] * rest_frames
    frames = []
    for i, thumb in enumerate(path):
        landmarks = rest.copy()
        landmarks[THUMB_TIP] = thumb
        frames.append(Frame(
            hands=[Hand(landmarks=landmarks, handedness=handedness)],
            timestamp=start_ms + i * interval_ms,
        ))
    return frames


def jittered_frames(
    count: int,
    interval_ms: float = 33.0,
    noise: float = 0.005,
    seed: Optional[int] = 42,
    handedness: str = RIGHT,
) -> list[Frame]:
    """``count`` frames of an open hand with gaussian landmark jitter."""
    rng = np.random.default_rng(seed)
    base = open_hand()
    return [
        Frame(
            hands=[Hand(landmarks=base + rng.normal(0.0, noise, base.shape), handedness=handedness)],
            timestamp=i * interval_ms,
        )
        for i in range(count)
    ]
