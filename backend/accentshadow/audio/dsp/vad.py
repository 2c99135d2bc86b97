"""Frame-level speech detection: scorers and the hysteresis segmenter."""
from dataclasses import dataclass
from typing import Iterator, List, Optional, Protocol

import numpy as np

from accentshadow.audio.models import SpeechSegment
from accentshadow.audio.options import DETECTOR_SAMPLE_RATE, VadConfig


class FrameScorer(Protocol):
    """Per-run scorer. Holds whatever recurrent state one pass needs."""

    def score(self, frame: np.ndarray) -> float:
        """Speech probability in [0, 1] for one frame of 16 kHz float32 audio."""
        ...


class SpeechModel(Protocol):
    """Loaded detector. Shared read-only; hands out a fresh scorer per run."""

    name: str

    def create_scorer(self, frame_samples: int) -> FrameScorer:
        ...


class EnergyScorer:
    """
    RMS scorer with an adaptive noise floor.

    The noise floor follows non-speech frames; the probability is a logistic
    function of the frame's SNR above that floor.
    """

    def __init__(
        self,
        snr_midpoint_db: float = 10.0,
        snr_slope_db: float = 2.0,
        noise_alpha: float = 0.02,
        min_noise_floor: float = 1e-3,
    ):
        self.snr_midpoint_db = snr_midpoint_db
        self.snr_slope_db = snr_slope_db
        self.noise_alpha = noise_alpha
        self.min_noise_floor = min_noise_floor
        self.noise_floor = min_noise_floor

    def score(self, frame: np.ndarray) -> float:
        if frame.size == 0:
            return 0.0

        x = frame.astype(np.float64)
        rms = float(np.sqrt(np.mean(x * x) + 1e-12))
        snr_db = 20.0 * np.log10(rms / self.noise_floor)
        z = np.clip((snr_db - self.snr_midpoint_db) / self.snr_slope_db, -50.0, 50.0)
        probability = float(1.0 / (1.0 + np.exp(-z)))

        # update noise floor using non-speech frames
        if probability < 0.5:
            updated = (1 - self.noise_alpha) * self.noise_floor + self.noise_alpha * rms
            self.noise_floor = max(self.min_noise_floor, updated)

        return probability


class EnergyModel:
    """Deterministic detector that needs no model file."""

    name = "energy"

    def create_scorer(self, frame_samples: int) -> FrameScorer:
        return EnergyScorer()


@dataclass
class _Frame:
    index: int
    is_speech: bool


class SpeechSegmenter:
    """
    Turns per-frame speech probabilities into utterances.

    A frame at or above the positive threshold opens (or keeps open) an
    utterance. Frames below the negative threshold count towards the
    redemption budget; once redemption_frames of them accumulate the
    utterance closes. Frames between the two thresholds neither count nor
    reset. An utterance with fewer than min_speech_frames speech frames is
    discarded as a misfire.

    While idle the segmenter keeps pre_speech_pad_frames of context so an
    utterance starts a little before its first speech frame. On close only
    positive_speech_pad_frames of the trailing silence are kept.
    """

    def __init__(self, config: VadConfig):
        self.config = config
        self._buffer: List[_Frame] = []
        self._speaking = False
        self._redemption_counter = 0

    def push(self, index: int, probability: float) -> Optional[range]:
        """
        Feed one frame.

        Returns:
            Frame range [start, end) of a finished utterance, or None
        """
        cfg = self.config
        is_positive = probability >= cfg.positive_speech_threshold
        self._buffer.append(_Frame(index, is_positive))

        if is_positive:
            self._redemption_counter = 0
            self._speaking = True

        finished = None
        if probability < cfg.negative_speech_threshold and self._speaking:
            self._redemption_counter += 1
            if self._redemption_counter >= cfg.redemption_frames:
                finished = self._close(trailing_silence=self._redemption_counter)

        if not self._speaking:
            overflow = len(self._buffer) - cfg.pre_speech_pad_frames
            if overflow > 0:
                del self._buffer[:overflow]

        return finished

    def flush(self) -> Optional[range]:
        """Close an utterance still open at end of input."""
        if not self._speaking:
            return None
        return self._close(trailing_silence=self._redemption_counter)

    def _close(self, trailing_silence: int) -> Optional[range]:
        cfg = self.config
        frames = self._buffer
        self._buffer = []
        self._speaking = False
        self._redemption_counter = 0

        speech_frames = sum(1 for f in frames if f.is_speech)
        if speech_frames < cfg.min_speech_frames or not frames:
            return None

        drop = max(0, trailing_silence - cfg.positive_speech_pad_frames)
        kept = frames[: len(frames) - drop] if drop else frames
        return range(kept[0].index, kept[-1].index + 1)


def iter_frames(samples: np.ndarray, frame_samples: int) -> Iterator[np.ndarray]:
    """Split audio into fixed frames; the last partial frame is zero-padded."""
    for start in range(0, samples.size, frame_samples):
        frame = samples[start:start + frame_samples]
        if frame.size < frame_samples:
            frame = np.pad(frame, (0, frame_samples - frame.size))
        yield frame


def iter_speech_segments(
    samples: np.ndarray,
    scorer: FrameScorer,
    config: VadConfig,
) -> Iterator[SpeechSegment]:
    """
    Lazily detect utterances in 16 kHz mono audio.

    Times are relative to the start of `samples`.
    """
    frame_samples = config.frame_samples
    total = int(samples.size)
    segmenter = SpeechSegmenter(config)

    def to_segment(frames: range) -> SpeechSegment:
        start = frames.start * frame_samples
        end = min(frames.stop * frame_samples, total)
        return SpeechSegment(
            start_time=start / DETECTOR_SAMPLE_RATE,
            end_time=end / DETECTOR_SAMPLE_RATE,
            length=end - start,
        )

    for index, frame in enumerate(iter_frames(samples, frame_samples)):
        finished = segmenter.push(index, scorer.score(frame))
        if finished is not None:
            yield to_segment(finished)

    finished = segmenter.flush()
    if finished is not None:
        yield to_segment(finished)
