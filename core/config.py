"""
Deep-Check Configuration

Detector thresholds and service settings.

DetectorConfig holds every tunable used by the capture, detection and
content-injection layers. Settings is read from the environment (a .env
file is honoured by main.py via python-dotenv).
"""

from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class DetectorConfig:
    """Thresholds for calibration and online anomaly detection (ms unless noted)."""

    # Calibration
    calibration_samples: int = 30
    min_flight_ms: float = 10.0
    max_flight_ms: float = 2000.0

    # Baseline deviation
    z_threshold: float = 3.5

    # Digram tracking
    digram_z_threshold: float = 4.0
    digram_min_count: int = 5
    digram_capacity: int = 512

    # Windowed rhythm shift (relative deviation of the recent mean)
    rhythm_window: int = 10
    rhythm_shift_threshold: float = 0.6

    # Burst detection
    burst_window_ms: float = 300.0
    burst_count: int = 8
    burst_cooldown_ms: float = 2000.0
    impossible_gap_ms: float = 12.0

    # Attention drift
    long_pause_ms: float = 3000.0

    # Rolling AI estimate
    ai_flight_window: int = 50
    ai_hold_window: int = 20
    ai_min_flights: int = 10
    ai_report_delta: int = 5

    # Content-injection side channel
    content_poll_interval_ms: float = 800.0
    content_growth_threshold: int = 3
    input_quiet_window_ms: float = 1500.0

    def __post_init__(self) -> None:
        if not 8 <= self.burst_count <= 12:
            raise ValueError(f"burst_count must be within 8-12, got {self.burst_count}")
        if self.calibration_samples < 2:
            raise ValueError("calibration_samples must be at least 2")
        if self.rhythm_shift_threshold <= 0:
            raise ValueError("rhythm_shift_threshold must be positive")


@dataclass(frozen=True)
class Settings:
    """Service settings read from environment variables."""

    model_path: str = "models/biometric-fraud-detector.onnx"
    scaler_path: str = "models/feature_scaler.json"
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: str | None = None
    profile_ttl_days: int = 90
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> Settings:
        """
        Build settings from the environment.

        Reads MODEL_PATH, SCALER_PATH, REDIS_HOST, REDIS_PORT, REDIS_PASSWORD,
        PROFILE_TTL_DAYS and LOG_LEVEL, falling back to the dataclass defaults.
        """
        defaults = cls()
        return cls(
            model_path=os.getenv("MODEL_PATH", defaults.model_path),
            scaler_path=os.getenv("SCALER_PATH", defaults.scaler_path),
            redis_host=os.getenv("REDIS_HOST", defaults.redis_host),
            redis_port=int(os.getenv("REDIS_PORT", defaults.redis_port)),
            redis_password=os.getenv("REDIS_PASSWORD") or None,
            profile_ttl_days=int(os.getenv("PROFILE_TTL_DAYS", defaults.profile_ttl_days)),
            log_level=os.getenv("LOG_LEVEL", defaults.log_level).upper(),
        )
