"""Hand landmark source backed by MediaPipe Hands."""

from __future__ import annotations

import numpy as np

try:
    import mediapipe as mp
except ImportError:
    mp = None


class HandDetector:
    """Runs MediaPipe Hands on RGB frames.

    ``detect`` returns the raw MediaPipe result (``multi_hand_landmarks`` and
    ``multi_handedness``), which ``TapPipeline.process_results`` consumes
    directly. Landmarks are normalized to [0, 1] image coordinates.
    """

    def __init__(
        self,
        max_hands: int = 1,
        min_detection_confidence: float = 0.7,
        min_tracking_confidence: float = 0.5,
        static_image_mode: bool = False,
    ):
        if mp is None:
            raise ImportError(
                "mediapipe is required. Install with: pip install tap-engine[camera]"
            )

        self.max_hands = max_hands
        self._hands = mp.solutions.hands.Hands(
            static_image_mode=static_image_mode,
            max_num_hands=max_hands,
            min_detection_confidence=min_detection_confidence,
            min_tracking_confidence=min_tracking_confidence,
        )

    def detect(self, frame_rgb: np.ndarray):
        """Detect hands in an RGB image of shape (H, W, 3), uint8."""
        return self._hands.process(frame_rgb)

    def close(self):
        """Release MediaPipe resources."""
        self._hands.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()
