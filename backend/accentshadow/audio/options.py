"""Explicit option structs for the processing core.

Every struct validates and clamps its fields on construction. They are built
from application settings at the wiring layer and can be overridden from a
settings-store record with the keys
``{padding, threshold, minSpeechDuration, maxSilenceDuration, maxTrimStart, maxTrimEnd}``.
"""
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Mapping, Optional
import math

from accentshadow.core.logging import logger

DETECTOR_SAMPLE_RATE = 16000
# The speech envelope always keeps at least this much context (seconds)
MIN_BOUNDARY_PADDING = 0.1


def _clamp(name: str, value: float, low: float, high: float) -> float:
    if math.isnan(value):
        logger.warning(f"Option {name} is NaN, using {low}")
        return low
    clamped = min(high, max(low, value))
    if clamped != value:
        logger.warning(f"Option {name}={value} out of range [{low}, {high}], clamped to {clamped}")
    return clamped


def _clamp_int(name: str, value: int, low: int, high: int) -> int:
    return int(_clamp(name, int(value), low, high))


@dataclass(frozen=True)
class VadConfig:
    """Detector configuration. Frame counts are at the 16 kHz operating rate."""
    positive_speech_threshold: float = 0.3
    negative_speech_threshold: float = 0.2
    min_speech_frames: int = 3
    frame_samples: int = 512
    redemption_frames: int = 32
    pre_speech_pad_frames: int = 4
    positive_speech_pad_frames: int = 4
    prepad_ms: int = 320
    merge_gap: float = 0.1  # seconds
    boundary_padding: float = MIN_BOUNDARY_PADDING  # seconds, applied to startTime/endTime only

    def __post_init__(self):
        object.__setattr__(self, "positive_speech_threshold",
            _clamp("positive_speech_threshold", float(self.positive_speech_threshold), 0.0, 1.0))
        object.__setattr__(self, "negative_speech_threshold",
            _clamp("negative_speech_threshold", float(self.negative_speech_threshold), 0.0, 1.0))
        if self.negative_speech_threshold >= self.positive_speech_threshold:
            # hysteresis needs negative < positive
            adjusted = self.positive_speech_threshold * 0.7
            logger.warning(
                f"negative_speech_threshold {self.negative_speech_threshold} >= positive "
                f"{self.positive_speech_threshold}, using {adjusted:.3f}"
            )
            object.__setattr__(self, "negative_speech_threshold", adjusted)
        object.__setattr__(self, "min_speech_frames", _clamp_int("min_speech_frames", self.min_speech_frames, 1, 1000))
        object.__setattr__(self, "frame_samples", _clamp_int("frame_samples", self.frame_samples, 64, 16000))
        object.__setattr__(self, "redemption_frames", _clamp_int("redemption_frames", self.redemption_frames, 1, 1000))
        object.__setattr__(self, "pre_speech_pad_frames", _clamp_int("pre_speech_pad_frames", self.pre_speech_pad_frames, 0, 100))
        object.__setattr__(self, "positive_speech_pad_frames",
            _clamp_int("positive_speech_pad_frames", self.positive_speech_pad_frames, 0, self.redemption_frames))
        object.__setattr__(self, "prepad_ms", _clamp_int("prepad_ms", self.prepad_ms, 0, 5000))
        object.__setattr__(self, "merge_gap", _clamp("merge_gap", float(self.merge_gap), 0.0, 10.0))
        object.__setattr__(self, "boundary_padding", _clamp("boundary_padding", float(self.boundary_padding), 0.0, 5.0))

    @property
    def frame_duration(self) -> float:
        """Seconds per detector frame."""
        return self.frame_samples / DETECTOR_SAMPLE_RATE

    @classmethod
    def from_settings(cls, settings, merge_gap: Optional[float] = None) -> "VadConfig":
        return cls(
            positive_speech_threshold=settings.vad_positive_speech_threshold,
            negative_speech_threshold=settings.vad_negative_speech_threshold,
            min_speech_frames=settings.vad_min_speech_frames,
            frame_samples=settings.vad_frame_samples,
            redemption_frames=settings.vad_redemption_frames,
            pre_speech_pad_frames=settings.vad_pre_speech_pad_frames,
            positive_speech_pad_frames=settings.vad_positive_speech_pad_frames,
            prepad_ms=settings.vad_prepad_ms,
            merge_gap=settings.boundary_merge_gap_s if merge_gap is None else merge_gap,
            boundary_padding=max(settings.boundary_padding_s, MIN_BOUNDARY_PADDING),
        )

    def with_record(self, record: Optional[Mapping[str, Any]]) -> "VadConfig":
        """Apply the detection keys of a settings-store record."""
        if not record:
            return self
        changes = {}
        if record.get("padding") is not None:
            changes["boundary_padding"] = max(float(record["padding"]), MIN_BOUNDARY_PADDING)
        if record.get("threshold") is not None:
            threshold = float(record["threshold"])
            changes["positive_speech_threshold"] = threshold
            changes["negative_speech_threshold"] = max(0.1, threshold * 0.7)
        if record.get("positiveSpeechThreshold") is not None:
            changes["positive_speech_threshold"] = float(record["positiveSpeechThreshold"])
        if record.get("negativeSpeechThreshold") is not None:
            changes["negative_speech_threshold"] = float(record["negativeSpeechThreshold"])
        if record.get("minSpeechDuration") is not None:
            frames = math.ceil(float(record["minSpeechDuration"]) / 1000.0 / self.frame_duration)
            changes["min_speech_frames"] = max(self.min_speech_frames, frames)
        if record.get("maxSilenceDuration") is not None:
            frames = round(float(record["maxSilenceDuration"]) / 1000.0 / self.frame_duration)
            changes["redemption_frames"] = max(1, frames)
            changes["positive_speech_pad_frames"] = min(self.positive_speech_pad_frames, max(1, frames))
        return replace(self, **changes) if changes else self


@dataclass(frozen=True)
class TrimOptions:
    """Silence trimming policy, all values in seconds."""
    padding: float = 0.15
    max_trim_start: float = 3.0
    max_trim_end: float = 2.0
    min_silence: float = 0.1  # skip trimming when both ends are below this
    min_duration: float = 0.05  # never produce a clip this short or shorter

    def __post_init__(self):
        object.__setattr__(self, "padding", _clamp("padding", float(self.padding), 0.0, 5.0))
        object.__setattr__(self, "max_trim_start", _clamp("max_trim_start", float(self.max_trim_start), 0.0, 3600.0))
        object.__setattr__(self, "max_trim_end", _clamp("max_trim_end", float(self.max_trim_end), 0.0, 3600.0))
        object.__setattr__(self, "min_silence", _clamp("min_silence", float(self.min_silence), 0.0, 10.0))
        object.__setattr__(self, "min_duration", _clamp("min_duration", float(self.min_duration), 0.0, 10.0))

    @classmethod
    def from_settings(cls, settings) -> "TrimOptions":
        return cls(
            padding=settings.trim_padding_s,
            max_trim_start=settings.trim_max_start_s,
            max_trim_end=settings.trim_max_end_s,
            min_silence=settings.trim_min_silence_s,
            min_duration=settings.trim_min_duration_s,
        )

    def with_record(self, record: Optional[Mapping[str, Any]]) -> "TrimOptions":
        if not record:
            return self
        changes = {}
        for key, attr in (("padding", "padding"), ("maxTrimStart", "max_trim_start"), ("maxTrimEnd", "max_trim_end")):
            if record.get(key) is not None:
                changes[attr] = float(record[key])
        return replace(self, **changes) if changes else self


@dataclass(frozen=True)
class AlignmentOptions:
    padding_ms: int = 200
    tolerance: float = 0.01  # seconds; closer than this counts as already aligned

    def __post_init__(self):
        object.__setattr__(self, "padding_ms", _clamp_int("padding_ms", self.padding_ms, 0, 10000))
        object.__setattr__(self, "tolerance", _clamp("tolerance", float(self.tolerance), 0.0, 1.0))

    @classmethod
    def from_settings(cls, settings) -> "AlignmentOptions":
        return cls(padding_ms=settings.alignment_padding_ms, tolerance=settings.alignment_tolerance_s)


class BalanceMode(str, Enum):
    TARGET = "target"
    USER = "user"
    AVERAGE = "average"


@dataclass(frozen=True)
class LevelOptions:
    target_lufs: float = -18.0
    max_gain: float = 4.0
    min_gain: float = 0.1
    balance_mode: BalanceMode = BalanceMode.AVERAGE

    def __post_init__(self):
        object.__setattr__(self, "target_lufs", _clamp("target_lufs", float(self.target_lufs), -70.0, 0.0))
        object.__setattr__(self, "max_gain", _clamp("max_gain", float(self.max_gain), 1.0, 100.0))
        object.__setattr__(self, "min_gain", _clamp("min_gain", float(self.min_gain), 0.001, 1.0))
        object.__setattr__(self, "balance_mode", BalanceMode(self.balance_mode))

    @classmethod
    def from_settings(cls, settings) -> "LevelOptions":
        return cls(target_lufs=settings.target_lufs, max_gain=settings.max_gain, min_gain=settings.min_gain)


@dataclass(frozen=True)
class CompressionConfig:
    enabled: bool = False
    threshold: float = -24.0  # dB
    knee: float = 30.0  # dB
    ratio: float = 12.0
    attack: float = 0.003  # seconds
    release: float = 0.25  # seconds

    def __post_init__(self):
        object.__setattr__(self, "threshold", _clamp("threshold", float(self.threshold), -100.0, 0.0))
        object.__setattr__(self, "knee", _clamp("knee", float(self.knee), 0.0, 40.0))
        object.__setattr__(self, "ratio", _clamp("ratio", float(self.ratio), 1.0, 20.0))
        object.__setattr__(self, "attack", _clamp("attack", float(self.attack), 0.0, 1.0))
        object.__setattr__(self, "release", _clamp("release", float(self.release), 0.0, 1.0))


@dataclass(frozen=True)
class GainConfig:
    enabled: bool = False
    gain: float = 1.0  # linear

    def __post_init__(self):
        object.__setattr__(self, "gain", _clamp("gain", float(self.gain), 0.0, 2.0))


@dataclass(frozen=True)
class EqConfig:
    enabled: bool = False
    low_gain: float = 0.0  # dB
    mid_gain: float = 0.0  # dB
    high_gain: float = 0.0  # dB

    def __post_init__(self):
        for name in ("low_gain", "mid_gain", "high_gain"):
            object.__setattr__(self, name, _clamp(name, float(getattr(self, name)), -40.0, 40.0))


@dataclass(frozen=True)
class EffectsConfig:
    """Post-processing chain. Applied in EQ, compression, gain order."""
    compression: CompressionConfig = field(default_factory=CompressionConfig)
    gain: GainConfig = field(default_factory=GainConfig)
    eq: EqConfig = field(default_factory=EqConfig)
    apply_to_vad: bool = False

    @property
    def any_enabled(self) -> bool:
        return self.compression.enabled or self.gain.enabled or self.eq.enabled

    @classmethod
    def from_record(cls, record: Optional[Mapping[str, Any]]) -> "EffectsConfig":
        """Build from a ``{compression: {...}, gain: {...}, eq: {...}}`` record."""
        if not record:
            return cls()
        compression = record.get("compression") or {}
        gain = record.get("gain") or {}
        eq = record.get("eq") or {}
        return cls(
            compression=CompressionConfig(
                enabled=bool(compression.get("enabled", False)),
                threshold=compression.get("threshold", -24.0),
                knee=compression.get("knee", 30.0),
                ratio=compression.get("ratio", 12.0),
                attack=compression.get("attack", 0.003),
                release=compression.get("release", 0.25),
            ),
            gain=GainConfig(enabled=bool(gain.get("enabled", False)), gain=gain.get("gain", 1.0)),
            eq=EqConfig(
                enabled=bool(eq.get("enabled", False)),
                low_gain=eq.get("lowGain", 0.0),
                mid_gain=eq.get("midGain", 0.0),
                high_gain=eq.get("highGain", 0.0),
            ),
            apply_to_vad=bool(record.get("applyToVAD", False)),
        )
