"""Silence trimming around a resolved speech envelope."""
import math
from typing import Optional, Tuple

import numpy as np

from accentshadow.audio.codec import encode
from accentshadow.audio.models import PcmBuffer, SpeechBoundaries, TrimResult
from accentshadow.audio.options import TrimOptions
from accentshadow.core.errors import DegenerateTrimResult
from accentshadow.core.logging import logger


def compute_trim_samples(
    length: int,
    sample_rate: int,
    boundaries: SpeechBoundaries,
    options: TrimOptions,
) -> Tuple[int, int]:
    """
    Number of samples to cut from the front and the back.

    Each side is clamped to [0, max_trim_*] independently of how much silence
    was detected.

    Raises:
        DegenerateTrimResult: if the cut would leave min_duration or less
    """
    pad = int(math.floor(options.padding * sample_rate))
    start_sample = int(math.floor(boundaries.start_time * sample_rate))
    end_sample = min(length, int(math.floor(boundaries.end_time * sample_rate)))

    start_trim = max(0, start_sample - pad)
    start_trim = min(start_trim, int(math.floor(options.max_trim_start * sample_rate)))

    end_trim = max(0, length - end_sample - pad)
    end_trim = min(end_trim, int(math.floor(options.max_trim_end * sample_rate)))

    new_length = length - start_trim - end_trim
    if new_length <= options.min_duration * sample_rate:
        raise DegenerateTrimResult(
            f"Trim would leave {new_length} samples ({new_length / sample_rate:.3f}s)"
        )

    return start_trim, end_trim


def trim_pcm(
    pcm: PcmBuffer,
    boundaries: SpeechBoundaries,
    options: TrimOptions,
) -> Tuple[PcmBuffer, int, int]:
    """
    Cut leading and trailing silence from a buffer.

    Returns:
        (trimmed buffer, samples cut at the front, samples cut at the back).
        The input is returned as-is with (0, 0) when nothing should be cut.
    """
    if boundaries.vad_failed:
        logger.debug(f"Skipping trim, boundaries not usable ({boundaries.status.value})")
        return pcm, 0, 0

    if boundaries.silence_start < options.min_silence and boundaries.silence_end < options.min_silence:
        logger.debug(
            f"Minimal silence ({boundaries.silence_start:.3f}s / {boundaries.silence_end:.3f}s), no trimming needed"
        )
        return pcm, 0, 0

    try:
        start_trim, end_trim = compute_trim_samples(pcm.length, pcm.sample_rate, boundaries, options)
    except DegenerateTrimResult as e:
        logger.warning(f"{e} - keeping original audio")
        return pcm, 0, 0

    if start_trim == 0 and end_trim == 0:
        return pcm, 0, 0

    kept = np.array(pcm.samples[:, start_trim:pcm.length - end_trim], dtype=np.float32, copy=True)
    return PcmBuffer(kept, pcm.sample_rate), start_trim, end_trim


def trim(
    pcm: PcmBuffer,
    boundaries: SpeechBoundaries,
    options: TrimOptions,
    original_blob: Optional[bytes] = None,
) -> TrimResult:
    """
    Trim a decoded clip and re-encode it.

    Args:
        pcm: Decoded clip
        boundaries: Resolved speech envelope of the clip
        options: Padding and safety caps
        original_blob: Source bytes, returned untouched when no trim happens

    Returns:
        TrimResult with trim amounts in seconds
    """
    original_duration = pcm.duration
    trimmed, start_trim, end_trim = trim_pcm(pcm, boundaries, options)

    if trimmed is pcm:
        blob = original_blob if original_blob is not None else encode(pcm)
        return TrimResult(
            blob=blob,
            trimmed_start=0.0,
            trimmed_end=0.0,
            original_duration=original_duration,
            new_duration=original_duration,
            boundaries=boundaries,
        )

    result = TrimResult(
        blob=encode(trimmed),
        trimmed_start=start_trim / pcm.sample_rate,
        trimmed_end=end_trim / pcm.sample_rate,
        original_duration=original_duration,
        new_duration=trimmed.duration,
        boundaries=boundaries,
    )
    logger.info(
        f"Trimmed {result.trimmed_start:.3f}s from start, {result.trimmed_end:.3f}s from end "
        f"({original_duration:.3f}s -> {result.new_duration:.3f}s)"
    )
    return result
