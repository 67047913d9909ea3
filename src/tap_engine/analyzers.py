"""Tap gesture analyzers.

Analyzers run once per processed frame, after extraction. Each keeps its
own ring buffers of recent feature values, looks for the shape a tap
leaves in them and emits events on the bus. Missing features never abort
a tick: the affected buffer just carries its newest value forward.

Three variants are provided:

- ``TapPhalanxAnalyzer``: every finger x phalanx, arbitrated down to one
  finger and one phalanx per tap. This is the one enabled by default.
- ``TapFingerAnalyzer``: picks the closest finger first, then requires
  distance-speed, angular-velocity and proximity evidence together.
- ``TapTipAnalyzer``: subscription driven, thumb-index tip speed only.
"""

from __future__ import annotations

import logging
import math
from collections import deque
from dataclasses import dataclass, field
from typing import Optional, Sequence

from tap_engine.buffers import RingBuffer
from tap_engine.events import EventBus, EventHistory, monotonic_ms
from tap_engine.features import FeatureStore
from tap_engine.types import HAND_SIDES, TAP_FINGERS, Event, Feature

logger = logging.getLogger("tap_engine.analyzers")

PHALANGES = ("base", "middle", "tip")
PHALANX_SUFFIX = ("B", "M", "T")
BASE, MIDDLE, TIP = 0, 1, 2

# Stands in for a distance that was never observed
MISSING_DISTANCE = 100.0


@dataclass
class PeakResult:
    """Outcome of a low -> peak -> low template match on one buffer."""
    has_peak: bool
    peak_index: int = 0
    peak_distance: float = 0.0
    peak_speed: float = 0.0


def detect_tap_pattern(
    speeds: Sequence[float],
    distances: Optional[Sequence[float]] = None,
    low_threshold: float = 0.1,
    high_threshold: float = 0.6,
) -> PeakResult:
    """Fixed-shape match: first sample low, middle sample high, last sample low.

    Also reports where the speed is largest and the distance at that
    index, whether or not the shape matched.
    """
    n = len(speeds)
    if n < 3:
        return PeakResult(has_peak=False)

    start, peak, end = speeds[0], speeds[n // 2], speeds[n - 1]
    has_peak = start < low_threshold and peak > high_threshold and end < low_threshold

    values = list(speeds)
    peak_index = values.index(max(values))
    distance = distances[peak_index] if distances is not None else 0.0
    return PeakResult(
        has_peak=bool(has_peak),
        peak_index=peak_index,
        peak_distance=round(float(distance), 3),
        peak_speed=round(float(values[peak_index]), 3),
    )


def select_winning_phalanx(dist_base: float, dist_middle: float, dist_tip: float) -> int:
    """Pick the phalanx a tap landed on from its three closest-approach distances.

    Non-increasing towards the tip selects the tip, non-decreasing towards
    the tip selects the middle, anything else selects the base. Three equal
    distances carry no direction and select the base.
    """
    if dist_base == dist_middle == dist_tip:
        return BASE
    if dist_tip <= dist_middle <= dist_base:
        return TIP
    if dist_base <= dist_middle <= dist_tip:
        return MIDDLE
    return BASE


@dataclass
class FingerPeak:
    """Per-phalanx match state of one finger for the current tick."""
    is_peak: list[bool] = field(default_factory=lambda: [False, False, False])
    distances: list[float] = field(default_factory=lambda: [0.0, 0.0, 0.0])
    speeds: list[float] = field(default_factory=lambda: [0.0, 0.0, 0.0])

    @property
    def match_count(self) -> int:
        return sum(self.is_peak)

    def to_dict(self) -> dict:
        return {
            "is_peak": list(self.is_peak),
            "distances": list(self.distances),
            "speeds": list(self.speeds),
        }


class Analyzer:
    """Base class for analyzers.

    The pipeline calls ``process(timestamp, hand)`` once per frame that went
    through extraction. ``hand`` is the handedness of that frame's hand and
    selects which hand-qualified features are read.
    """

    name: str = "Analyzer"

    def __init__(self, store: FeatureStore, bus: EventBus, enabled: bool = True):
        self.store = store
        self.bus = bus
        self._enabled = enabled

    @property
    def history(self) -> EventHistory:
        return self.bus.history

    def process(self, timestamp: Optional[float] = None, hand: Optional[str] = None) -> list[Event]:
        if not self._enabled:
            return []
        now = monotonic_ms() if timestamp is None else timestamp
        return self.analyze(now, hand)

    def analyze(self, timestamp: float, hand: Optional[str] = None) -> list[Event]:
        raise NotImplementedError

    def enable(self):
        self._enabled = True

    def disable(self):
        self._enabled = False

    def is_enabled(self) -> bool:
        return self._enabled

    def reset(self):
        """Return to the freshly constructed state."""

    def close(self):
        """Release any store subscriptions."""

    def read_number(self, name: str, hand: Optional[str]) -> Optional[float]:
        """Current numeric value of a feature for ``hand``, falling back to
        the unqualified key (and, without a hand, to either hand)."""
        candidates: list[Optional[str]] = [hand, None] if hand else [None, *HAND_SIDES]
        for side in candidates:
            value = self.store.get_value(name, side)
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                return float(value)
        return None

    def emit(self, event_type: str, data: dict, timestamp: float, hand: Optional[str] = None) -> Event:
        event = Event(type=event_type, data=data, timestamp=timestamp, hand=hand)
        self.bus.emit(event)
        return event


def advance(buffer: RingBuffer, value: Optional[float]):
    if value is None:
        buffer.repeat_latest()
    else:
        buffer.push(value)


class _Cooldown:
    def __init__(self, period_ms: float):
        self.period_ms = period_ms
        self.last: Optional[float] = None

    def active(self, now: float) -> bool:
        return self.last is not None and now - self.last < self.period_ms

    def start(self, now: float):
        self.last = now

    def reset(self):
        self.last = None


class TapPhalanxAnalyzer(Analyzer):
    """Detects thumb taps on any phalanx of the four non-thumb fingers.

    Every tick, each finger x phalanx buffer of ``thumb_to_{finger}{B|M|T}_distspeed``
    and ``..._dist`` advances one slot. A phalanx matches when its speed
    buffer is low at the start, above ``high_threshold`` at the midpoint and
    low again at the end. A finger qualifies when at least ``min_phalanges``
    of its phalanges match in the same tick; among qualifying fingers the one
    with the smallest distance on its winning phalanx is reported. At most
    one event is emitted per ``cooldown_ms``.
    """

    name = "TapPhalanxDetection"
    EVENT = "max_finger_peak_detected"

    def __init__(
        self,
        store: FeatureStore,
        bus: EventBus,
        buffer_size: int = 10,
        low_threshold: float = 0.1,
        high_threshold: float = 0.6,
        cooldown_ms: float = 250.0,
        min_phalanges: int = 2,
        fingers: Sequence[str] = TAP_FINGERS,
        enabled: bool = True,
    ):
        super().__init__(store, bus, enabled)
        self.buffer_size = buffer_size
        self.low_threshold = low_threshold
        self.high_threshold = high_threshold
        self.min_phalanges = min_phalanges
        self.fingers = tuple(fingers)
        self._cooldown = _Cooldown(cooldown_ms)

        self.speed_buffers = {
            (f, p): RingBuffer(buffer_size) for f in self.fingers for p in range(len(PHALANGES))
        }
        self.distance_buffers = {
            (f, p): RingBuffer(buffer_size) for f in self.fingers for p in range(len(PHALANGES))
        }
        self.peak_states: dict[str, FingerPeak] = {f: FingerPeak() for f in self.fingers}

    @property
    def cooldown_ms(self) -> float:
        return self._cooldown.period_ms

    def analyze(self, timestamp: float, hand: Optional[str] = None) -> list[Event]:
        self._update_buffers(hand)

        if self._cooldown.active(timestamp):
            return []

        self.peak_states = {f: self._finger_peak(f) for f in self.fingers}
        candidate = self._select_candidate()
        if candidate is None:
            return []

        finger, phalanx, distance = candidate
        self._cooldown.start(timestamp)
        event = self.emit(
            self.EVENT,
            {
                "finger": finger,
                "phalanx": phalanx,
                "phalanx_name": PHALANGES[phalanx],
                "distance": distance,
                "peak": self.peak_states[finger].to_dict(),
                "timestamp": timestamp,
            },
            timestamp,
            hand,
        )
        logger.info(
            "Tap detected on %s finger, %s phalanx (distance %.3f)",
            finger, PHALANGES[phalanx], distance,
        )
        return [event]

    def _update_buffers(self, hand: Optional[str]):
        for finger in self.fingers:
            for phalanx, suffix in enumerate(PHALANX_SUFFIX):
                prefix = f"thumb_to_{finger}{suffix}"
                advance(self.speed_buffers[(finger, phalanx)], self.read_number(f"{prefix}_distspeed", hand))
                advance(self.distance_buffers[(finger, phalanx)], self.read_number(f"{prefix}_dist", hand))

    def _finger_peak(self, finger: str) -> FingerPeak:
        state = FingerPeak()
        for phalanx in range(len(PHALANGES)):
            result = detect_tap_pattern(
                self.speed_buffers[(finger, phalanx)].values().tolist(),
                self.distance_buffers[(finger, phalanx)].values().tolist(),
                self.low_threshold,
                self.high_threshold,
            )
            state.is_peak[phalanx] = result.has_peak
            state.distances[phalanx] = result.peak_distance
            state.speeds[phalanx] = result.peak_speed
        return state

    def _select_candidate(self) -> Optional[tuple[str, int, float]]:
        best: Optional[tuple[str, int, float]] = None
        best_distance = math.inf

        for finger in self.fingers:
            state = self.peak_states[finger]
            if state.match_count < self.min_phalanges:
                continue

            distances = [d if d else MISSING_DISTANCE for d in state.distances]
            phalanx = select_winning_phalanx(*distances)
            # A winning phalanx whose distance was never observed is not a tap
            if not state.distances[phalanx]:
                continue
            if distances[phalanx] < best_distance:
                best_distance = distances[phalanx]
                best = (finger, phalanx, distances[phalanx])

        return best

    def reset(self):
        for buffer in (*self.speed_buffers.values(), *self.distance_buffers.values()):
            buffer.reset()
        self.peak_states = {f: FingerPeak() for f in self.fingers}
        self._cooldown.reset()


class TapFingerAnalyzer(Analyzer):
    """Single-finger tap detector.

    The finger currently closest to the thumb tip is chosen first; a tap is
    reported for it when ``required_conditions`` of these hold:

    - its ``thumb_to_{finger}_distance_speed`` buffer is low/high/low,
    - its ``|{finger}_angular_velocity|`` buffer is low/high/low,
    - the smallest distance seen in the window is below ``proximity``.
    """

    name = "TapFingerDetection"
    EVENT = "finger_tap_detected"

    def __init__(
        self,
        store: FeatureStore,
        bus: EventBus,
        buffer_size: int = 10,
        speed_low: float = 0.1,
        speed_high: float = 0.4,
        angular_low: float = 1.0,
        angular_high: float = 3.0,
        proximity: float = 0.15,
        required_conditions: int = 3,
        cooldown_ms: float = 250.0,
        fingers: Sequence[str] = TAP_FINGERS,
        enabled: bool = True,
    ):
        super().__init__(store, bus, enabled)
        self.speed_low = speed_low
        self.speed_high = speed_high
        self.angular_low = angular_low
        self.angular_high = angular_high
        self.proximity = proximity
        self.required_conditions = required_conditions
        self.fingers = tuple(fingers)
        self._cooldown = _Cooldown(cooldown_ms)

        self.speed_buffers = {f: RingBuffer(buffer_size) for f in self.fingers}
        self.angular_buffers = {f: RingBuffer(buffer_size) for f in self.fingers}
        self.distance_buffers = {f: RingBuffer(buffer_size) for f in self.fingers}

    def analyze(self, timestamp: float, hand: Optional[str] = None) -> list[Event]:
        current: dict[str, float] = {}
        for finger in self.fingers:
            distance = self.read_number(f"thumb_to_{finger}_distance", hand)
            angular = self.read_number(f"{finger}_angular_velocity", hand)
            advance(self.speed_buffers[finger], self.read_number(f"thumb_to_{finger}_distance_speed", hand))
            advance(self.angular_buffers[finger], abs(angular) if angular is not None else None)
            advance(self.distance_buffers[finger], distance)
            if distance is not None:
                current[finger] = distance

        if self._cooldown.active(timestamp) or not current:
            return []

        finger = min(current, key=current.get)  # type: ignore[arg-type]
        conditions = self._conditions(finger)
        if sum(conditions.values()) < self.required_conditions:
            return []

        self._cooldown.start(timestamp)
        event = self.emit(
            self.EVENT,
            {"finger": finger, "distance": current[finger], "conditions": conditions, "timestamp": timestamp},
            timestamp,
            hand,
        )
        logger.info("Finger tap detected on %s (distance %.3f)", finger, current[finger])
        return [event]

    def _conditions(self, finger: str) -> dict[str, bool]:
        speed = detect_tap_pattern(
            self.speed_buffers[finger].values().tolist(), None, self.speed_low, self.speed_high,
        )
        angular = detect_tap_pattern(
            self.angular_buffers[finger].values().tolist(), None, self.angular_low, self.angular_high,
        )
        observed = [d for d in self.distance_buffers[finger].values().tolist() if d > 0]
        return {
            "distance_speed": speed.has_peak,
            "angular_velocity": angular.has_peak,
            "proximity": bool(observed) and min(observed) < self.proximity,
        }

    def reset(self):
        for buffers in (self.speed_buffers, self.angular_buffers, self.distance_buffers):
            for buffer in buffers.values():
                buffer.reset()
        self._cooldown.reset()


class TapTipAnalyzer(Analyzer):
    """Thumb-index tip tap from a time window of distance-speed samples.

    Driven by FeatureStore subscriptions rather than the per-frame tick: each
    new ``feature_name`` sample is added to a ``window_ms`` window for its
    hand, and a low/high/low shape (endpoints under half the maximum, the
    maximum strictly inside and above ``min_peak``) emits an event. Emissions
    are at least ``window_ms`` apart.
    """

    name = "TapTipDetection"
    EVENT = "tap_tip_detected"

    def __init__(
        self,
        store: FeatureStore,
        bus: EventBus,
        feature_name: str = "thumb_to_index_distance_speed",
        window_ms: float = 500.0,
        min_peak: float = 0.1,
        enabled: bool = True,
    ):
        super().__init__(store, bus, enabled)
        self.feature_name = feature_name
        self.window_ms = window_ms
        self.min_peak = min_peak
        self._windows: dict[Optional[str], deque[Feature]] = {}
        self._last_emit: dict[Optional[str], float] = {}
        self._hands = (None, *HAND_SIDES)
        for hand in self._hands:
            store.subscribe(feature_name, self._on_feature, hand)

    def analyze(self, timestamp: float, hand: Optional[str] = None) -> list[Event]:
        return []

    def _on_feature(self, feature: Feature):
        if not self._enabled or isinstance(feature.value, (bool, str)):
            return

        window = self._windows.setdefault(feature.hand, deque())
        window.append(feature)
        while window and window[0].timestamp < feature.timestamp - self.window_ms:
            window.popleft()
        self._check(window, feature.hand)

    def _check(self, window: deque, hand: Optional[str]):
        if len(window) < 3:
            return
        values = [float(f.value) for f in window]
        peak = max(values)
        peak_idx = values.index(peak)
        first_ts, last_ts = window[0].timestamp, window[-1].timestamp

        if not (
            0 < peak_idx < len(values) - 1
            and values[0] < peak * 0.5
            and values[-1] < peak * 0.5
            and peak > self.min_peak
            and last_ts - first_ts <= self.window_ms
        ):
            return

        last_emit = self._last_emit.get(hand)
        if last_emit is not None and last_ts - last_emit <= self.window_ms:
            return

        self._last_emit[hand] = last_ts
        peak_feature = window[peak_idx]
        self.emit(
            self.EVENT,
            {"value": peak, "hand": hand, "timestamp": peak_feature.timestamp},
            peak_feature.timestamp,
            hand,
        )
        logger.info("Tip tap detected (peak speed %.3f)", peak)

    def reset(self):
        self._windows.clear()
        self._last_emit.clear()

    def close(self):
        for hand in self._hands:
            self.store.unsubscribe(self.feature_name, self._on_feature, hand)


AVAILABLE_ANALYZERS: dict[str, type[Analyzer]] = {
    "tap_phalanx": TapPhalanxAnalyzer,
    "tap_finger": TapFingerAnalyzer,
    "tap_tip": TapTipAnalyzer,
}


def create_analyzer(analyzer_id: str, store: FeatureStore, bus: EventBus, **params) -> Analyzer:
    try:
        cls = AVAILABLE_ANALYZERS[analyzer_id]
    except KeyError:
        raise KeyError(f"Unknown analyzer: {analyzer_id}") from None
    return cls(store, bus, **params)
