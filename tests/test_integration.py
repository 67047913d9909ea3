"""End-to-end tests: synthetic landmark streams through the default pipeline."""

import pytest

from tap_engine.config import PipelineConfig
from tap_engine.pipeline import TapPipeline
from tap_engine.synthetic import jittered_frames, tap_frames


def run(pipeline, frames):
    events = []
    for frame in frames:
        events.extend(pipeline.process_frame(frame))
    return events


class TestTapDetection:
    @pytest.mark.parametrize("finger", ["index", "middle"])
    def test_single_tap_on_fingertip(self, finger):
        pipeline = TapPipeline.with_defaults()
        events = run(pipeline, tap_frames(finger, "T"))

        assert len(events) == 1
        event = events[0]
        assert event.type == "max_finger_peak_detected"
        assert event.data["finger"] == finger
        assert event.data["phalanx_name"] == "tip"
        assert event.hand == "Right"

    def test_event_recorded_in_history(self):
        pipeline = TapPipeline.with_defaults()
        run(pipeline, tap_frames("index", "T"))
        last = pipeline.history.get_last_event("max_finger_peak_detected")
        assert last is not None
        assert pipeline.history.was_emitted_recently(
            "max_finger_peak_detected", 500, hand="Right", now=last.timestamp + 100,
        )

    def test_two_separate_taps(self):
        pipeline = TapPipeline.with_defaults()
        first = tap_frames("index", "T")
        second = tap_frames("index", "T", start_ms=first[-1].timestamp + 50)
        events = run(pipeline, first + second)
        assert len(events) == 2
        assert events[1].timestamp - events[0].timestamp > 250

    def test_listener_sees_taps(self):
        pipeline = TapPipeline.with_defaults()
        taps = []
        pipeline.bus.on("max_finger_peak_detected", lambda e: taps.append(e.data["finger"]))
        run(pipeline, tap_frames("middle", "T"))
        assert taps == ["middle"]

    def test_left_hand(self):
        pipeline = TapPipeline.with_defaults()
        events = run(pipeline, tap_frames("index", "T", handedness="Left"))
        assert [e.hand for e in events] == ["Left"]

    def test_steady_hand_no_taps(self):
        pipeline = TapPipeline.with_defaults()
        events = run(pipeline, jittered_frames(300, interval_ms=50.0, noise=0.0005))
        assert events == []
        assert pipeline.status.frame_count == 300

    def test_tap_lost_when_second_hand_appears(self):
        pipeline = TapPipeline.with_defaults()
        frames = tap_frames("index", "T")
        for frame in frames[10:16]:
            frame.hands.append(frame.hands[0])
        events = run(pipeline, frames)
        assert events == []
        assert pipeline.status.skipped_frames == 6


class TestAlternativeAnalyzers:
    def test_tip_analyzer_on_tap(self):
        config = PipelineConfig.from_dict({"analyzers": ["tap_tip"]})
        with TapPipeline.from_config(config) as pipeline:
            events = run(pipeline, tap_frames("index", "T"))
        assert [e.type for e in events] == ["tap_tip_detected"]

    def test_all_analyzers_together(self):
        config = PipelineConfig.from_dict({"analyzers": ["tap_phalanx", "tap_finger", "tap_tip"]})
        with TapPipeline.from_config(config) as pipeline:
            events = run(pipeline, tap_frames("index", "T"))
        types = {e.type for e in events}
        assert "max_finger_peak_detected" in types
        assert "tap_tip_detected" in types

    def test_kalman_enabled_pipeline_runs(self):
        config = PipelineConfig.from_dict({
            "preprocessors": ["center", "normalise", {"id": "kalman-filter", "enabled": True}],
        })
        pipeline = TapPipeline.from_config(config)
        run(pipeline, tap_frames("index", "T"))
        assert pipeline.preprocessors[2].tracked_hands == [("Right", 21)]
