"""Voice activity detection adapter around a pluggable speech model."""
import asyncio
from enum import Enum
from functools import partial
from typing import Callable, List, Optional, Union

import numpy as np

from accentshadow.audio.codec import resample_mono
from accentshadow.audio.dsp.vad import EnergyModel, SpeechModel, iter_speech_segments
from accentshadow.audio.ml.silero import load_silero_model
from accentshadow.audio.models import DetectorUnavailable, SpeechDetected, SpeechSegment
from accentshadow.audio.options import DETECTOR_SAMPLE_RATE, VadConfig
from accentshadow.core.errors import VADUnavailable
from accentshadow.core.logging import logger

DetectionOutcome = Union[SpeechDetected, DetectorUnavailable]


class VadState(str, Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    UNAVAILABLE = "unavailable"


class VadAdapter:
    """
    Runs offline speech detection over complete clips.

    The model is loaded once, lazily, with a timeout. If loading fails or
    times out the adapter stays unavailable for the rest of the session and
    every detection call returns DetectorUnavailable without retrying.

    Before detection the clip is resampled to 16 kHz and prefixed with
    prepad_ms of digital silence; reported times are shifted back by the same
    amount (clamped at zero), so results do not depend on how much leading
    silence the source had.
    """

    def __init__(
        self,
        loader: Callable[[], SpeechModel],
        config: Optional[VadConfig] = None,
        init_timeout: float = 5.0,
    ):
        self._loader = loader
        self.config = config or VadConfig()
        self.init_timeout = init_timeout
        self._model: Optional[SpeechModel] = None
        self._state = VadState.UNINITIALIZED
        self._unavailable_reason: Optional[str] = None
        self._init_lock = asyncio.Lock()

    @property
    def state(self) -> VadState:
        return self._state

    @property
    def ready(self) -> bool:
        return self._state == VadState.READY

    @property
    def unavailable_reason(self) -> Optional[str]:
        return self._unavailable_reason

    @property
    def backend(self) -> Optional[str]:
        return self._model.name if self._model is not None else None

    def mark_unavailable(self, reason: str) -> None:
        """Permanently disable detection for this session."""
        if self._state != VadState.UNAVAILABLE:
            logger.warning(f"VAD unavailable, clips will not be trimmed: {reason}")
        self._model = None
        self._state = VadState.UNAVAILABLE
        self._unavailable_reason = reason

    async def initialize(self) -> bool:
        """
        Load the speech model once.

        Safe to call repeatedly and concurrently.

        Returns:
            True if the detector is ready
        """
        if self._state != VadState.UNINITIALIZED:
            return self.ready

        async with self._init_lock:
            if self._state != VadState.UNINITIALIZED:
                return self.ready

            logger.info("Initializing VAD model...")
            try:
                model = await asyncio.wait_for(asyncio.to_thread(self._loader), timeout=self.init_timeout)
            except asyncio.TimeoutError:
                self.mark_unavailable(f"VAD initialization timed out after {self.init_timeout}s")
                return False
            except VADUnavailable as e:
                self.mark_unavailable(str(e))
                return False
            except Exception as e:
                self.mark_unavailable(f"VAD initialization failed: {e}")
                return False

            self._model = model
            self._state = VadState.READY
            logger.info(f"VAD model ready (backend: {model.name})")
            return True

    async def detect_raw_segments(
        self,
        mono: np.ndarray,
        sample_rate: int,
        config: Optional[VadConfig] = None,
    ) -> DetectionOutcome:
        """
        Detect speech segments in a mono clip.

        Args:
            mono: float32 samples at sample_rate
            sample_rate: Native rate of the clip
            config: Detector options (defaults to the adapter's)

        Returns:
            SpeechDetected with segments in the clip's own timeline, or
            DetectorUnavailable
        """
        if not await self.initialize():
            logger.debug("VAD not available - using original audio without trimming")
            return DetectorUnavailable(self._unavailable_reason or "VAD unavailable")

        config = config or self.config
        try:
            segments = await asyncio.to_thread(
                self._detect, np.asarray(mono, dtype=np.float32), sample_rate, config
            )
        except Exception as e:
            logger.error(f"Speech detection failed: {e}", exc_info=True)
            return DetectorUnavailable(f"Speech detection failed: {e}")

        return SpeechDetected(tuple(segments))

    def _detect(self, mono: np.ndarray, sample_rate: int, config: VadConfig) -> List[SpeechSegment]:
        if sample_rate != DETECTOR_SAMPLE_RATE:
            mono = resample_mono(mono, sample_rate, DETECTOR_SAMPLE_RATE)

        duration = mono.size / DETECTOR_SAMPLE_RATE
        prepad_samples = int(round(config.prepad_ms / 1000.0 * DETECTOR_SAMPLE_RATE))
        offset = prepad_samples / DETECTOR_SAMPLE_RATE
        padded = np.concatenate([np.zeros(prepad_samples, dtype=np.float32), mono])

        scorer = self._model.create_scorer(config.frame_samples)
        segments = []
        for segment in iter_speech_segments(padded, scorer, config):
            start = max(0.0, segment.start_time - offset)
            end = min(duration, max(0.0, segment.end_time - offset))
            if end <= start:
                # lies entirely inside the synthetic pre-padding
                continue
            segments.append(SpeechSegment(start_time=start, end_time=end, length=segment.length))
            logger.debug(f"Speech segment detected: {start:.3f}s - {end:.3f}s")

        return segments


def create_vad_adapter(settings, config: Optional[VadConfig] = None) -> VadAdapter:
    """Build an adapter for the configured backend."""
    backend = settings.vad_backend.lower()
    if backend == "energy":
        loader = EnergyModel
    elif backend == "silero":
        loader = partial(load_silero_model, settings.vad_model_path)
    else:
        raise ValueError(f"Unknown VAD backend: {settings.vad_backend}")

    return VadAdapter(
        loader,
        config=config or VadConfig.from_settings(settings),
        init_timeout=settings.vad_init_timeout_s,
    )
