"""Tests for the feature store."""

import logging

import pytest

from tap_engine.features import FeatureStore
from tap_engine.types import Feature, FeatureDisplay, FeatureType


def make_feature(name="thumb_to_index_distance", value=0.1, ts=0.0, hand=None, **kwargs):
    return Feature(name=name, value=value, parent="Test", timestamp=ts, hand=hand, **kwargs)


class TestSetAndGet:
    def test_missing_key_is_none(self):
        store = FeatureStore()
        assert store.get_feature("nope") is None
        assert store.get_value("nope", default=-1) == -1
        assert store.get_feature_history("nope") == []

    def test_latest_value_wins(self):
        store = FeatureStore()
        store.set_feature(make_feature(value=0.1, ts=0))
        store.set_feature(make_feature(value=0.2, ts=10))
        assert store.get_value("thumb_to_index_distance") == 0.2

    def test_hand_qualified_keys(self):
        store = FeatureStore()
        store.set_feature(make_feature(value=0.1, hand="Left"))
        store.set_feature(make_feature(value=0.3, hand="Right"))

        assert store.get_value("thumb_to_index_distance", "Left") == 0.1
        assert store.get_value("thumb_to_index_distance", "Right") == 0.3
        assert store.get_feature("thumb_to_index_distance") is None
        assert "thumb_to_index_distance_Left" in store

    def test_out_of_order_update_dropped(self, caplog):
        store = FeatureStore()
        assert store.set_feature(make_feature(value=0.1, ts=100))
        with caplog.at_level(logging.WARNING, logger="tap_engine.features"):
            assert not store.set_feature(make_feature(value=0.9, ts=50))
        assert store.get_value("thumb_to_index_distance") == 0.1
        assert len(store.get_feature_history("thumb_to_index_distance")) == 1
        assert "out-of-order" in caplog.text

    def test_equal_timestamps_accepted(self):
        store = FeatureStore()
        assert store.set_feature(make_feature(value=0.1, ts=100))
        assert store.set_feature(make_feature(value=0.2, ts=100))


class TestHistory:
    def test_cap_keeps_most_recent_oldest_first(self):
        store = FeatureStore(max_history=100)
        for i in range(150):
            store.set_feature(make_feature(value=float(i), ts=float(i)))

        history = store.get_feature_history("thumb_to_index_distance")
        assert len(history) == 100
        assert [f.value for f in history] == [float(i) for i in range(50, 150)]

    def test_count_returns_last_entries(self):
        store = FeatureStore()
        for i in range(10):
            store.set_feature(make_feature(value=float(i), ts=float(i)))

        last = store.get_feature_history("thumb_to_index_distance", count=3)
        assert [f.value for f in last] == [7.0, 8.0, 9.0]

    def test_count_larger_than_history(self):
        store = FeatureStore()
        store.set_feature(make_feature(ts=1))
        assert len(store.get_feature_history("thumb_to_index_distance", count=50)) == 1

    def test_non_positive_count(self):
        store = FeatureStore()
        store.set_feature(make_feature(ts=1))
        assert store.get_feature_history("thumb_to_index_distance", count=0) == []

    def test_invalid_cap(self):
        with pytest.raises(ValueError):
            FeatureStore(max_history=0)


class TestFilteredViews:
    @pytest.fixture
    def store(self):
        store = FeatureStore()
        store.set_feature(make_feature("a", 1.0))
        store.set_feature(Feature(
            name="b", value=True, parent="Other", timestamp=0, type=FeatureType.BOOL,
            display=FeatureDisplay.NUMBER, hand="Left",
        ))
        store.set_feature(make_feature("c", 2.0, hand="Right"))
        return store

    def test_by_type(self, store):
        assert set(store.get_features_by_type(FeatureType.BOOL)) == {"b_Left"}

    def test_by_parent(self, store):
        assert set(store.get_features_by_parent("Test")) == {"a", "c_Right"}

    def test_by_hand(self, store):
        assert set(store.get_features_by_hand("Right")) == {"c_Right"}

    def test_graphable(self, store):
        assert set(store.get_graphable_features()) == {"a", "c_Right"}

    def test_stats_and_clear(self, store):
        assert store.stats() == {"total_features": 3, "total_history_entries": 3}
        store.clear()
        assert len(store) == 0
        assert store.get_all_features() == {}


class TestSubscriptions:
    def test_exact_key_only(self):
        store = FeatureStore()
        seen = []
        store.subscribe("x", seen.append, hand="Right")

        store.set_feature(make_feature("x", 1.0, hand="Left"))
        store.set_feature(make_feature("x", 2.0))
        store.set_feature(make_feature("x", 3.0, hand="Right"))

        assert [f.value for f in seen] == [3.0]

    def test_failing_subscriber_isolated(self, caplog):
        store = FeatureStore()
        seen = []

        def broken(feature):
            raise RuntimeError("boom")

        store.subscribe("x", broken)
        store.subscribe("x", seen.append)

        with caplog.at_level(logging.ERROR, logger="tap_engine.features"):
            store.set_feature(make_feature("x", 1.0))

        assert len(seen) == 1
        assert "boom" in caplog.text

    def test_unsubscribe(self):
        store = FeatureStore()
        seen = []
        store.subscribe("x", seen.append)
        assert store.subscriber_count("x") == 1
        store.unsubscribe("x", seen.append)
        assert store.subscriber_count("x") == 0
        store.set_feature(make_feature("x", 1.0))
        assert seen == []

    def test_subscriptions_survive_clear(self):
        store = FeatureStore()
        seen = []
        store.subscribe("x", seen.append)
        store.clear()
        store.set_feature(make_feature("x", 1.0))
        assert len(seen) == 1
