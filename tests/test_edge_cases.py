"""Edge case tests: malformed landmarks, odd timing and misbehaving listeners."""

import logging

import numpy as np
import pytest

from tap_engine.config import PipelineConfig
from tap_engine.pipeline import TapPipeline
from tap_engine.synthetic import open_hand, tap_frames
from tap_engine.types import INDEX_MCP, PINKY_MCP, THUMB_TIP, Frame, Hand


def frame(landmarks, ts=0.0, handedness="Right"):
    return Frame(hands=[Hand(landmarks=landmarks, handedness=handedness)], timestamp=ts)


class TestLandmarkEdgeCases:
    """Bad landmarks must never raise out of the pipeline."""

    @pytest.fixture
    def pipeline(self):
        return TapPipeline.with_defaults()

    def test_nan_landmarks(self, pipeline):
        pipeline.process_frame(frame(np.full((21, 3), np.nan)))
        assert pipeline.store.get_feature("thumb_to_index_distance", "Right") is None

    def test_inf_landmarks(self, pipeline):
        pipeline.process_frame(frame(np.full((21, 3), np.inf)))

    def test_zero_landmarks(self, pipeline):
        pipeline.process_frame(frame(np.zeros((21, 3))))
        assert pipeline.store.get_value("thumb_to_index_distance", "Right") == 0.0

    def test_single_nan_thumb(self, pipeline):
        lm = open_hand()
        lm[THUMB_TIP] = np.nan
        pipeline.process_frame(frame(lm))
        assert pipeline.store.get_feature("thumb_to_index_distance", "Right") is None
        assert pipeline.store.get_feature("index_curvature_value", "Right") is not None

    def test_huge_coordinates(self, pipeline):
        pipeline.clear_preprocessors()
        pipeline.process_frame(frame(open_hand() * 1e6))
        assert pipeline.store.get_feature("thumb_to_index_distance", "Right") is None

    def test_truncated_hand(self, pipeline):
        pipeline.process_frame(frame(open_hand()[:8]))
        assert pipeline.store.get_feature("thumb_to_index_distance", "Right") is None

    def test_zero_palm_width(self, pipeline):
        lm = open_hand()
        lm[PINKY_MCP] = lm[INDEX_MCP]
        pipeline.process_frame(frame(lm))
        assert pipeline.store.get_feature("thumb_to_index_distance", "Right") is not None

    def test_three_hands_skipped(self, pipeline):
        hands = [Hand(open_hand(), "Right") for _ in range(3)]
        pipeline.process_frame(Frame(hands=hands, timestamp=0.0))
        assert len(pipeline.store) == 0


class TestTimingEdgeCases:
    def test_repeated_timestamp(self):
        pipeline = TapPipeline.with_defaults()
        pipeline.process_frame(frame(open_hand(), ts=100.0))
        pipeline.process_frame(frame(open_hand(), ts=100.0))
        assert pipeline.store.get_feature("thumb_to_index_distance_speed", "Right") is None

    def test_backwards_timestamp(self, caplog):
        pipeline = TapPipeline.with_defaults()
        pipeline.process_frame(frame(open_hand(), ts=200.0))
        moved = open_hand()
        moved[THUMB_TIP] += 0.05
        with caplog.at_level(logging.WARNING, logger="tap_engine.features"):
            pipeline.process_frame(frame(moved, ts=100.0))

        assert pipeline.store.get_feature("thumb_to_index_distance", "Right").timestamp == 200.0
        assert "out-of-order" in caplog.text

    def test_slower_frame_interval_still_detects(self):
        pipeline = TapPipeline.with_defaults()
        frames = tap_frames("index", "T", interval_ms=40.0)
        events = []
        for f in frames:
            events.extend(pipeline.process_frame(f))
        assert len(events) == 1


class TestListenerFailures:
    def test_failing_listener_does_not_stop_pipeline(self, caplog):
        pipeline = TapPipeline.with_defaults()
        received = []

        def broken(event):
            raise RuntimeError("consumer crashed")

        pipeline.bus.on("max_finger_peak_detected", broken)
        pipeline.bus.on("*", received.append)

        with caplog.at_level(logging.ERROR, logger="tap_engine.events"):
            events = []
            for f in tap_frames("index", "T"):
                events.extend(pipeline.process_frame(f))

        assert len(events) == 1
        # Both the caller's listener and the pipeline's collector saw it
        assert len(received) == 1
        assert "consumer crashed" in caplog.text

    def test_failing_feature_subscriber(self, caplog):
        pipeline = TapPipeline.with_defaults()

        def broken(feature):
            raise ValueError("bad subscriber")

        pipeline.store.subscribe("thumb_to_index_distance", broken, hand="Right")
        with caplog.at_level(logging.ERROR, logger="tap_engine.features"):
            pipeline.process_frame(frame(open_hand()))
        assert pipeline.store.get_feature("thumb_to_middle_distance", "Right") is not None
        assert "bad subscriber" in caplog.text


class TestDisabledComponents:
    def test_all_analyzers_disabled(self):
        config = PipelineConfig.from_dict({"analyzers": [{"id": "tap_phalanx", "enabled": False}]})
        pipeline = TapPipeline.from_config(config)
        events = []
        for f in tap_frames("index", "T"):
            events.extend(pipeline.process_frame(f))
        assert events == []

    def test_no_components(self):
        pipeline = TapPipeline()
        assert pipeline.process_frame(frame(open_hand())) == []
        assert pipeline.status.frame_count == 1
