"""tap-engine - Real-time thumb tap recognition from hand landmarks."""

__version__ = "0.1.0"

from tap_engine.types import Event, Feature, FeatureDisplay, FeatureType, Frame, Hand
from tap_engine.features import FeatureStore
from tap_engine.events import EventBus, EventHistory
from tap_engine.preprocessors import (
    CenterPreprocessor,
    KalmanFilterPreprocessor,
    NormalisePreprocessor,
    Preprocessor,
)
from tap_engine.extractors import (
    AngularFinger,
    CurvatureFinger,
    DistanceFinger,
    DistancePhalanx,
    FeatureExtractor,
)
from tap_engine.kinematics import KinematicFinger
from tap_engine.hand_geometry import HandOrientation, HandSize
from tap_engine.buffers import RingBuffer
from tap_engine.analyzers import Analyzer, TapFingerAnalyzer, TapPhalanxAnalyzer, TapTipAnalyzer
from tap_engine.config import ConfigError, PipelineConfig
from tap_engine.pipeline import PipelineStatus, TapPipeline
from tap_engine.detector import HandDetector
