"""
Deep-Check Core Processors

Public exports for capture and feature engineering processors.
"""

from core.processors.content import ContentInjectionMonitor
from core.processors.features import FEATURE_NAMES, FeatureVector, extract_feature_vector
from core.processors.keyboard import KeystrokeCapture, KeystrokeEvent, SessionRecorder

__all__ = [
    "KeystrokeCapture",
    "KeystrokeEvent",
    "SessionRecorder",
    "ContentInjectionMonitor",
    "FEATURE_NAMES",
    "FeatureVector",
    "extract_feature_vector",
]
