"""Configuration settings for the AccentShadow processing backend."""
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Server settings
    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: List[str] = ["*"]

    # VAD detector settings
    # "energy" needs nothing extra. "silero" needs silero_vad.onnx (v5) from the
    # snakers4/silero-vad project saved at vad_model_path; without it the
    # detector is unavailable and clips pass through untrimmed.
    vad_backend: str = "energy"
    vad_model_path: Optional[str] = "models/silero_vad.onnx"
    vad_init_timeout_s: float = 5.0
    vad_positive_speech_threshold: float = 0.3
    vad_negative_speech_threshold: float = 0.2
    vad_min_speech_frames: int = 3
    vad_frame_samples: int = 512  # at 16 kHz, ~32ms per frame
    vad_redemption_frames: int = 32
    vad_pre_speech_pad_frames: int = 4
    vad_positive_speech_pad_frames: int = 4
    vad_prepad_ms: int = 320  # synthetic leading silence added before detection

    # Boundary resolution
    boundary_merge_gap_s: float = 0.1  # generic silence detection
    alignment_merge_gap_s: float = 0.5  # two-clip alignment
    boundary_padding_s: float = 0.1  # context kept around the envelope, never below 0.1

    # Silence trimming
    trim_padding_s: float = 0.15
    trim_max_start_s: float = 3.0
    trim_max_end_s: float = 2.0
    trim_min_silence_s: float = 0.1
    trim_min_duration_s: float = 0.05

    # Onset alignment
    alignment_padding_ms: int = 200
    alignment_tolerance_s: float = 0.01

    # Loudness normalization
    target_lufs: float = -18.0
    max_gain: float = 4.0
    min_gain: float = 0.1
    level_cache_size: int = 64

    # Logging
    log_level: str = "INFO"


settings = Settings()
