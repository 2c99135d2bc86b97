"""Audio data models and structures."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple
import math
import time

import numpy as np


@dataclass(frozen=True, eq=False)
class PcmBuffer:
    """Decoded audio: float32 samples in [-1, 1], shaped (channels, frames)."""
    samples: np.ndarray
    sample_rate: int

    def __post_init__(self):
        """Validate buffer shape and rate."""
        if self.samples.ndim != 2:
            raise ValueError(f"Expected (channels, frames) array, got shape {self.samples.shape}")
        if self.samples.shape[0] < 1:
            raise ValueError("PCM buffer needs at least one channel")
        if self.sample_rate <= 0:
            raise ValueError(f"Invalid sample rate: {self.sample_rate}")
        if self.samples.dtype != np.float32:
            object.__setattr__(self, "samples", self.samples.astype(np.float32))

    @property
    def num_channels(self) -> int:
        return int(self.samples.shape[0])

    @property
    def length(self) -> int:
        """Number of sample frames per channel."""
        return int(self.samples.shape[1])

    @property
    def duration(self) -> float:
        return self.length / self.sample_rate

    def mono(self) -> np.ndarray:
        """Downmix all channels to a single float32 array."""
        if self.num_channels == 1:
            return self.samples[0]
        return self.samples.mean(axis=0).astype(np.float32)

    @classmethod
    def silence(cls, num_channels: int, length: int, sample_rate: int) -> "PcmBuffer":
        return cls(np.zeros((num_channels, max(0, length)), dtype=np.float32), sample_rate)

    @classmethod
    def from_mono(cls, data: np.ndarray, sample_rate: int) -> "PcmBuffer":
        return cls(np.asarray(data, dtype=np.float32).reshape(1, -1), sample_rate)


@dataclass(frozen=True)
class SpeechSegment:
    """One utterance reported by the detector."""
    start_time: float  # seconds
    end_time: float  # seconds
    length: int  # samples at the detector's operating rate

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time


@dataclass(frozen=True)
class SpeechDetected:
    """Detector ran; segments may be empty."""
    segments: Tuple[SpeechSegment, ...]


@dataclass(frozen=True)
class DetectorUnavailable:
    """Detector could not run for this call (init failure, timeout or inference error)."""
    reason: str


class BoundaryStatus(str, Enum):
    DETECTED = "detected"
    NO_SPEECH = "no_speech"
    VAD_UNAVAILABLE = "vad_unavailable"
    DECODE_FAILED = "decode_failed"


@dataclass(frozen=True)
class SpeechBoundaries:
    """Resolved speech envelope for one clip. Every field is always populated."""
    start_time: float
    end_time: float
    start_sample: int
    end_sample: int
    original_speech_start: float
    original_speech_end: float
    silence_start: float
    silence_end: float
    speech_segments: int
    confidence_score: float
    clip_duration: float
    sample_rate: int
    status: BoundaryStatus = BoundaryStatus.DETECTED
    error: Optional[str] = None

    @property
    def vad_failed(self) -> bool:
        """True means: treat the clip as all speech and do not trim."""
        return self.status != BoundaryStatus.DETECTED

    def to_dict(self) -> dict:
        return {
            "startTime": self.start_time,
            "endTime": self.end_time,
            "startSample": self.start_sample,
            "endSample": self.end_sample,
            "originalSpeechStart": self.original_speech_start,
            "originalSpeechEnd": self.original_speech_end,
            "silenceStart": self.silence_start,
            "silenceEnd": self.silence_end,
            "speechSegments": self.speech_segments,
            "confidenceScore": self.confidence_score,
            "vadFailed": self.vad_failed,
            "status": self.status.value,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: dict, clip_duration: float, sample_rate: int) -> "SpeechBoundaries":
        """
        Rebuild boundaries sent back by a client.

        Missing original_speech_* fall back to startTime/endTime and missing
        silence amounts are derived from the clip duration.
        """
        start = float(data.get("startTime", 0.0))
        end = float(data.get("endTime", clip_duration))
        if "status" in data:
            status = BoundaryStatus(data["status"])
        elif data.get("vadFailed"):
            status = BoundaryStatus.NO_SPEECH
        else:
            status = BoundaryStatus.DETECTED
        return cls(
            start_time=start,
            end_time=end,
            start_sample=int(data.get("startSample", math.floor(start * sample_rate))),
            end_sample=int(data.get("endSample", math.floor(end * sample_rate))),
            original_speech_start=float(data.get("originalSpeechStart", start)),
            original_speech_end=float(data.get("originalSpeechEnd", end)),
            silence_start=float(data.get("silenceStart", start)),
            silence_end=float(data.get("silenceEnd", clip_duration - end)),
            speech_segments=int(data.get("speechSegments", 0)),
            confidence_score=float(data.get("confidenceScore", 0.0)),
            clip_duration=clip_duration,
            sample_rate=sample_rate,
            status=status,
            error=data.get("error"),
        )


@dataclass(frozen=True)
class TrimResult:
    blob: bytes
    trimmed_start: float  # seconds removed from the front
    trimmed_end: float  # seconds removed from the back
    original_duration: float
    new_duration: float
    boundaries: Optional[SpeechBoundaries]
    error: Optional[str] = None

    @property
    def trimmed(self) -> bool:
        return self.trimmed_start > 0 or self.trimmed_end > 0


@dataclass(frozen=True)
class SilenceInfo:
    original_silence_start: float
    original_silence_end: float
    trimmed_start: float = 0.0
    trimmed_end: float = 0.0
    final_silence_start: float = 0.0
    final_silence_end: float = 0.0

    def to_dict(self) -> dict:
        return {
            "originalSilenceStart": self.original_silence_start,
            "originalSilenceEnd": self.original_silence_end,
            "trimmedStart": self.trimmed_start,
            "trimmedEnd": self.trimmed_end,
            "finalSilenceStart": self.final_silence_start,
            "finalSilenceEnd": self.final_silence_end,
        }


@dataclass(frozen=True)
class ProcessingResult:
    blob: bytes
    boundaries: SpeechBoundaries
    silence_info: SilenceInfo
    vad_used: bool
    error: Optional[str] = None


@dataclass(frozen=True)
class AlignmentClip:
    """One side of an alignment request."""
    blob: bytes
    boundaries: SpeechBoundaries
    already_normalized: bool = False


class AlignmentMethod(str, Enum):
    ALREADY_ALIGNED = "already_aligned"
    END_PADDING = "end_padding"
    ERROR_FALLBACK = "error_fallback"


@dataclass(frozen=True)
class AlignmentInfo:
    padding_added: float
    final_duration: float
    method: AlignmentMethod
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "paddingAdded": self.padding_added,
            "finalDuration": self.final_duration,
            "method": self.method.value,
            "error": self.error,
        }


@dataclass(frozen=True)
class AlignmentResult:
    audio1_aligned: bytes
    audio2_aligned: bytes
    alignment_info: AlignmentInfo


@dataclass(frozen=True)
class RecordingAlignment:
    """End-to-end result of aligning a raw target and user recording."""
    target: ProcessingResult
    user: ProcessingResult
    alignment: AlignmentResult
    alignment_quality: float


@dataclass(frozen=True)
class AudioLevelInfo:
    """Immutable loudness snapshot of one clip."""
    rms: float
    peak: float
    duration: float
    sample_rate: int
    lufs: float
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            "rms": self.rms,
            "peak": self.peak,
            "duration": self.duration,
            "sampleRate": self.sample_rate,
            # -inf (silence) is not valid JSON
            "lufs": self.lufs if math.isfinite(self.lufs) else None,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class NormalizationGains:
    target_gain: float
    user_gain: float
    reference_lufs: float

    def to_dict(self) -> dict:
        return {
            "targetGain": self.target_gain,
            "userGain": self.user_gain,
            "referenceLUFS": self.reference_lufs,
        }
