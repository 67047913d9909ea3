"""Tests for the tap pipeline orchestrator."""

from types import SimpleNamespace

import numpy as np
import pytest

from tap_engine.analyzers import TapPhalanxAnalyzer
from tap_engine.config import ConfigError, PipelineConfig
from tap_engine.extractors import DistanceFinger
from tap_engine.pipeline import TapPipeline, frame_from_results
from tap_engine.preprocessors import CenterPreprocessor
from tap_engine.synthetic import open_hand
from tap_engine.types import Frame, Hand


def mediapipe_results(hands):
    """Mimic MediaPipe Hands output for a list of (landmarks, label, score)."""
    return SimpleNamespace(
        multi_hand_landmarks=[
            SimpleNamespace(landmark=[SimpleNamespace(x=x, y=y, z=z) for x, y, z in lm])
            for lm, _, _ in hands
        ] or None,
        multi_handedness=[
            SimpleNamespace(classification=[SimpleNamespace(label=label, score=score)])
            for _, label, score in hands
        ] or None,
    )


def one_hand_frame(ts=0.0, handedness="Right"):
    return Frame(hands=[Hand(landmarks=open_hand(), handedness=handedness)], timestamp=ts)


class TestFrameFromResults:
    def test_mediapipe_structure(self):
        lm = open_hand()
        frame = frame_from_results(mediapipe_results([(lm, "Left", 0.93)]), 123.0)
        assert frame.timestamp == 123.0
        assert len(frame.hands) == 1
        hand = frame.hands[0]
        assert hand.handedness == "Left"
        assert hand.confidence == pytest.approx(0.93)
        np.testing.assert_allclose(hand.landmarks, lm)

    def test_no_hands(self):
        assert frame_from_results(mediapipe_results([]), 0.0).hands == []
        assert frame_from_results(None, 0.0).hands == []

    def test_dict_input(self):
        lm = open_hand()
        frame = frame_from_results(
            {"hands": [{"landmarks": lm.tolist(), "handedness": "Right", "score": 0.8}]}, 5.0,
        )
        assert frame.hands[0].handedness == "Right"
        assert frame.hands[0].confidence == pytest.approx(0.8)
        np.testing.assert_allclose(frame.hands[0].landmarks, lm)

    def test_landmark_dicts(self):
        points = [{"x": 0.1, "y": 0.2, "z": 0.3}] * 21
        frame = frame_from_results({"hands": [{"landmarks": points, "handedness": "Left"}]}, 0.0)
        np.testing.assert_allclose(frame.hands[0].landmarks[0], [0.1, 0.2, 0.3])

    def test_selfie_mirrors_and_swaps(self):
        lm = open_hand()
        frame = frame_from_results(mediapipe_results([(lm, "Left", 1.0)]), 0.0, "selfie")
        hand = frame.hands[0]
        assert hand.handedness == "Right"
        np.testing.assert_allclose(hand.landmarks[:, 0], 1.0 - lm[:, 0])
        np.testing.assert_allclose(hand.landmarks[:, 1:], lm[:, 1:])


class TestConstruction:
    def test_with_defaults(self):
        pipeline = TapPipeline.with_defaults()
        assert [p.id for p in pipeline.preprocessors] == ["center", "normalise", "kalman-filter"]
        assert len(pipeline.extractors) == 9
        assert isinstance(pipeline.analyzers[0], TapPhalanxAnalyzer)
        assert pipeline.analyzers[0].store is pipeline.store
        assert pipeline.analyzers[0].bus is pipeline.bus

    def test_separate_pipelines_share_nothing(self):
        a = TapPipeline.with_defaults()
        b = TapPipeline.with_defaults()
        assert a.store is not b.store
        assert a.bus is not b.bus

    def test_invalid_coordinate_system(self):
        with pytest.raises(ConfigError):
            TapPipeline(coordinate_system="upside-down")

    def test_from_config_validates(self):
        config = PipelineConfig()
        config.coordinate_system = "upside-down"
        with pytest.raises(ConfigError):
            TapPipeline.from_config(config)

    def test_clear_preprocessors(self):
        pipeline = TapPipeline.with_defaults()
        pipeline.clear_preprocessors()
        assert pipeline.preprocessors == []


class TestProcessing:
    def test_features_extracted_for_one_hand(self):
        pipeline = TapPipeline.with_defaults()
        pipeline.process_frame(one_hand_frame())
        assert pipeline.store.get_feature("thumb_to_index_distance", "Right") is not None
        assert pipeline.store.get_feature("thumb_to_indexB_dist", "Right") is not None
        assert pipeline.store.get_feature("index_curvature_value", "Right") is not None

    @pytest.mark.parametrize("count", [0, 2])
    def test_extraction_skipped_unless_one_hand(self, count):
        pipeline = TapPipeline.with_defaults()
        hands = [Hand(open_hand(), side) for side in ("Left", "Right")[:count]]
        pipeline.process_frame(Frame(hands=hands, timestamp=0.0))
        assert len(pipeline.store) == 0
        assert pipeline.status.skipped_frames == 1
        assert pipeline.status.hand_count == count

    def test_current_frame_is_preprocessed(self):
        pipeline = TapPipeline()
        pipeline.add_preprocessor(CenterPreprocessor())
        pipeline.process_frame(one_hand_frame())
        np.testing.assert_allclose(pipeline.current_frame.hands[0].landmarks[0], [0, 0, 0])

    def test_process_results(self):
        pipeline = TapPipeline.with_defaults()
        pipeline.process_results(mediapipe_results([(open_hand(), "Left", 0.9)]), timestamp=10.0)
        assert pipeline.store.get_feature("thumb_to_index_distance", "Left").timestamp == 10.0
        assert pipeline.status.hands["Left"].confidence == pytest.approx(0.9)

    def test_process_results_default_timestamp(self):
        pipeline = TapPipeline.with_defaults()
        pipeline.process_results(mediapipe_results([(open_hand(), "Left", 0.9)]))
        assert pipeline.current_frame.timestamp > 0

    def test_selfie_pipeline_swaps_hands(self):
        pipeline = TapPipeline.with_defaults(coordinate_system="selfie")
        pipeline.process_results(mediapipe_results([(open_hand(), "Left", 0.9)]), timestamp=0.0)
        assert pipeline.store.get_feature("thumb_to_index_distance", "Right") is not None
        assert pipeline.store.get_feature("thumb_to_index_distance", "Left") is None

    def test_returns_events_emitted_during_call(self):
        pipeline = TapPipeline()

        class Always(TapPhalanxAnalyzer):
            def analyze(self, timestamp, hand=None):
                return [self.emit("ping", {}, timestamp, hand)]

        pipeline.add_analyzer(Always(pipeline.store, pipeline.bus))
        events = pipeline.process_frame(one_hand_frame(ts=5.0))
        assert [e.type for e in events] == ["ping"]
        assert pipeline.bus.listener_count("*") == 0
        assert pipeline.status.total_events == 1

    def test_analyzer_gets_frame_hand(self):
        pipeline = TapPipeline()
        calls = []

        class Recorder(TapPhalanxAnalyzer):
            def analyze(self, timestamp, hand=None):
                calls.append((timestamp, hand))
                return []

        pipeline.add_analyzer(Recorder(pipeline.store, pipeline.bus))
        pipeline.process_frame(one_hand_frame(ts=42.0, handedness="Left"))
        pipeline.process_frame(Frame(hands=[], timestamp=50.0))
        assert calls == [(42.0, "Left")]


class TestStatus:
    def test_counts_and_fps(self):
        pipeline = TapPipeline.with_defaults()
        for i in range(10):
            pipeline.process_frame(one_hand_frame(ts=i * 50.0))
        status = pipeline.status
        assert status.frame_count == 10
        assert status.fps == pytest.approx(20.0)
        assert status.avg_processing_ms > 0
        assert status.hands["Right"].landmark_count == 21
        assert status.coordinate_system == "camera"

    def test_empty(self):
        status = TapPipeline().status
        assert status.frame_count == 0
        assert status.fps == 0.0
        assert status.hands == {}


class TestLifecycle:
    def test_reset(self):
        pipeline = TapPipeline.with_defaults()
        for i in range(5):
            pipeline.process_frame(one_hand_frame(ts=i * 50.0))
        pipeline.reset()
        assert len(pipeline.store) == 0
        assert len(pipeline.history) == 0
        assert pipeline.current_frame is None
        assert pipeline.status.frame_count == 0

        # Timestamps may restart after a reset
        pipeline.process_frame(one_hand_frame(ts=0.0))
        assert pipeline.store.get_feature("thumb_to_index_distance", "Right") is not None

    def test_context_manager_closes_analyzers(self):
        config = PipelineConfig.from_dict({"analyzers": ["tap_tip"]})
        with TapPipeline.from_config(config) as pipeline:
            assert pipeline.store.subscriber_count("thumb_to_index_distance_speed", "Right") == 1
        assert pipeline.store.subscriber_count("thumb_to_index_distance_speed", "Right") == 0

    def test_history_clock_follows_frames(self):
        pipeline = TapPipeline()

        class Always(TapPhalanxAnalyzer):
            def analyze(self, timestamp, hand=None):
                if timestamp == 5.0:
                    return [self.emit("ping", {}, timestamp, hand)]
                return []

        pipeline.add_analyzer(Always(pipeline.store, pipeline.bus))
        pipeline.process_frame(one_hand_frame(ts=5.0))
        pipeline.process_frame(one_hand_frame(ts=300.0))
        assert pipeline.clock() == 300.0
        assert pipeline.history.was_emitted_recently("ping", 500)

        pipeline.process_frame(one_hand_frame(ts=1000.0))
        assert not pipeline.history.was_emitted_recently("ping", 500)
        assert pipeline.history.get_recent_events(1000) != []

    def test_clock_before_first_frame_is_monotonic(self):
        pipeline = TapPipeline()
        assert pipeline.clock() > 0
        pipeline.process_frame(one_hand_frame(ts=42.0))
        pipeline.reset()
        assert pipeline.clock() != 42.0

    def test_add_extractor(self):
        pipeline = TapPipeline()
        pipeline.add_extractor(DistanceFinger())
        pipeline.process_frame(one_hand_frame())
        assert "thumb_to_index_distance_Right" in pipeline.store
