"""Feature store: current values, bounded history and per-key subscriptions."""

from __future__ import annotations

import logging
from collections import deque
from typing import Callable, Optional

from tap_engine.types import Feature, FeatureDisplay, FeatureType, feature_key

logger = logging.getLogger("tap_engine.features")

FeatureCallback = Callable[[Feature], None]


class FeatureStore:
    """Keyed store of the latest value of every feature.

    Keys are the feature name, suffixed with ``_Left``/``_Right`` when the
    feature is tagged with a hand. Each key keeps a bounded history (oldest
    evicted first) and an ordered list of subscribers notified synchronously
    on every update of that exact key.

    Usage:
        store = FeatureStore()
        store.subscribe("thumb_to_index_distance", print, hand="Right")
        store.set_feature(feature)
        latest = store.get_feature("thumb_to_index_distance", "Right")
    """

    def __init__(self, max_history: int = 100):
        if max_history < 1:
            raise ValueError("max_history must be at least 1")
        self.max_history = max_history
        self._features: dict[str, Feature] = {}
        self._history: dict[str, deque[Feature]] = {}
        self._subscribers: dict[str, list[FeatureCallback]] = {}

    def set_feature(self, feature: Feature) -> bool:
        """Store a feature as the current value of its key.

        Returns False (and stores nothing) when the feature is older than the
        value already held under the same key.
        """
        key = feature.key
        current = self._features.get(key)
        if current is not None and feature.timestamp < current.timestamp:
            logger.warning(
                "Dropping out-of-order feature %s (%.1f < %.1f)",
                key, feature.timestamp, current.timestamp,
            )
            return False

        self._features[key] = feature
        if key not in self._history:
            self._history[key] = deque(maxlen=self.max_history)
        self._history[key].append(feature)

        self._notify(key, feature)
        return True

    def get_feature(self, name: str, hand: Optional[str] = None) -> Optional[Feature]:
        return self._features.get(feature_key(name, hand))

    def get_value(self, name: str, hand: Optional[str] = None, default=None):
        """Shortcut for the current value of a feature, or ``default``."""
        feature = self.get_feature(name, hand)
        return feature.value if feature is not None else default

    def get_feature_history(
        self, name: str, hand: Optional[str] = None, count: Optional[int] = None
    ) -> list[Feature]:
        """Return up to the last ``count`` entries for a key, oldest first."""
        history = self._history.get(feature_key(name, hand))
        if not history:
            return []
        entries = list(history)
        if count is not None:
            if count <= 0:
                return []
            entries = entries[-count:]
        return entries

    def get_all_features(self) -> dict[str, Feature]:
        return dict(self._features)

    def get_features_by_type(self, feature_type: FeatureType) -> dict[str, Feature]:
        return {k: f for k, f in self._features.items() if f.type == feature_type}

    def get_features_by_parent(self, parent: str) -> dict[str, Feature]:
        return {k: f for k, f in self._features.items() if f.parent == parent}

    def get_features_by_hand(self, hand: str) -> dict[str, Feature]:
        return {k: f for k, f in self._features.items() if f.hand == hand}

    def get_features_by_display(self, display: FeatureDisplay) -> dict[str, Feature]:
        return {k: f for k, f in self._features.items() if f.display == display}

    def get_graphable_features(self) -> dict[str, Feature]:
        return self.get_features_by_display(FeatureDisplay.GRAPH)

    def subscribe(self, name: str, callback: FeatureCallback, hand: Optional[str] = None):
        """Register a callback for updates of one exact key."""
        self._subscribers.setdefault(feature_key(name, hand), []).append(callback)

    def unsubscribe(self, name: str, callback: FeatureCallback, hand: Optional[str] = None):
        callbacks = self._subscribers.get(feature_key(name, hand))
        if callbacks and callback in callbacks:
            callbacks.remove(callback)

    def subscriber_count(self, name: str, hand: Optional[str] = None) -> int:
        return len(self._subscribers.get(feature_key(name, hand), []))

    def clear(self):
        """Drop all values and history. Subscriptions are kept."""
        self._features.clear()
        self._history.clear()

    def stats(self) -> dict[str, int]:
        return {
            "total_features": len(self._features),
            "total_history_entries": sum(len(h) for h in self._history.values()),
        }

    def __len__(self) -> int:
        return len(self._features)

    def __contains__(self, key: str) -> bool:
        return key in self._features

    def _notify(self, key: str, feature: Feature):
        for callback in list(self._subscribers.get(key, ())):
            try:
                callback(feature)
            except Exception:
                logger.exception("FeatureStore subscriber error on %s", key)
