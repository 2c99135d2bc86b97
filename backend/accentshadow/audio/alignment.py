"""Onset-synchronized alignment of two clips."""
import math
from typing import Optional

import numpy as np

from accentshadow.audio.codec import decode, encode
from accentshadow.audio.models import (
    AlignmentClip,
    AlignmentInfo,
    AlignmentMethod,
    AlignmentResult,
    PcmBuffer,
    SpeechBoundaries,
)
from accentshadow.audio.options import AlignmentOptions
from accentshadow.core.errors import AlignmentFailure
from accentshadow.core.logging import logger


def normalize_silence(pcm: PcmBuffer, boundaries: SpeechBoundaries, padding_ms: int) -> PcmBuffer:
    """
    Rebuild a clip as padding + speech + padding.

    The speech is taken from the unpadded envelope
    (original_speech_start..original_speech_end) and placed so that it
    starts exactly floor(padding_ms * rate / 1000) samples into the buffer.
    """
    sr = pcm.sample_rate
    pad = int(math.floor(padding_ms / 1000.0 * sr))

    speech_start = min(pcm.length, max(0, int(math.floor(boundaries.original_speech_start * sr))))
    speech_end = min(pcm.length, max(speech_start, int(math.floor(boundaries.original_speech_end * sr))))
    speech_len = speech_end - speech_start

    out = np.zeros((pcm.num_channels, pad + speech_len + pad), dtype=np.float32)
    out[:, pad:pad + speech_len] = pcm.samples[:, speech_start:speech_end]

    logger.debug(
        f"Normalized silence: speech {speech_len / sr:.3f}s placed at {pad / sr:.3f}s, "
        f"total {out.shape[1] / sr:.3f}s"
    )
    return PcmBuffer(out, sr)


def pad_at_end(pcm: PcmBuffer, target_length: int) -> PcmBuffer:
    """Append digital silence until the buffer has target_length samples."""
    missing = target_length - pcm.length
    if missing <= 0:
        return pcm
    tail = np.zeros((pcm.num_channels, missing), dtype=np.float32)
    return PcmBuffer(np.concatenate([pcm.samples, tail], axis=1), pcm.sample_rate)


def _matching_length(shorter: PcmBuffer, longer: PcmBuffer) -> int:
    if shorter.sample_rate == longer.sample_rate:
        return longer.length
    return int(math.floor(longer.duration * shorter.sample_rate))


def align_pair(
    clip_a: AlignmentClip,
    clip_b: AlignmentClip,
    options: Optional[AlignmentOptions] = None,
) -> AlignmentResult:
    """
    Place both clips' speech onsets at the same offset and equalize durations.

    Each clip is normalized to padding + speech + padding unless it is
    flagged already_normalized. The shorter result is then padded at the end
    so both last equally long. Channel counts and sample rates are kept.

    Any failure returns both original blobs with method error_fallback.

    Args:
        clip_a: First clip with its boundaries
        clip_b: Second clip with its boundaries
        options: Padding and duration tolerance

    Returns:
        AlignmentResult
    """
    options = options or AlignmentOptions()
    try:
        return _align(clip_a, clip_b, options)
    except Exception as e:
        failure = e if isinstance(e, AlignmentFailure) else AlignmentFailure(str(e))
        logger.error(f"Alignment failed, using original audio: {failure}", exc_info=True)
        return AlignmentResult(
            audio1_aligned=clip_a.blob,
            audio2_aligned=clip_b.blob,
            alignment_info=AlignmentInfo(
                padding_added=0.0,
                final_duration=0.0,
                method=AlignmentMethod.ERROR_FALLBACK,
                error=str(failure),
            ),
        )


def _align(clip_a: AlignmentClip, clip_b: AlignmentClip, options: AlignmentOptions) -> AlignmentResult:
    prepared = []
    for clip in (clip_a, clip_b):
        pcm = decode(clip.blob)
        if clip.already_normalized:
            prepared.append([pcm, clip.blob])
        else:
            prepared.append([normalize_silence(pcm, clip.boundaries, options.padding_ms), None])

    (pcm_a, blob_a), (pcm_b, blob_b) = prepared
    difference = abs(pcm_a.duration - pcm_b.duration)

    if difference < options.tolerance:
        logger.info(f"Audio durations already aligned (difference {difference * 1000:.1f}ms)")
        return AlignmentResult(
            audio1_aligned=blob_a if blob_a is not None else encode(pcm_a),
            audio2_aligned=blob_b if blob_b is not None else encode(pcm_b),
            alignment_info=AlignmentInfo(
                padding_added=0.0,
                final_duration=max(pcm_a.duration, pcm_b.duration),
                method=AlignmentMethod.ALREADY_ALIGNED,
            ),
        )

    if pcm_a.duration < pcm_b.duration:
        padded = pad_at_end(pcm_a, _matching_length(pcm_a, pcm_b))
        padding_added = padded.duration - pcm_a.duration
        pcm_a, blob_a = padded, None
    else:
        padded = pad_at_end(pcm_b, _matching_length(pcm_b, pcm_a))
        padding_added = padded.duration - pcm_b.duration
        pcm_b, blob_b = padded, None

    final_duration = max(pcm_a.duration, pcm_b.duration)
    logger.info(f"Added {padding_added:.3f}s of end padding, final duration {final_duration:.3f}s")

    return AlignmentResult(
        audio1_aligned=blob_a if blob_a is not None else encode(pcm_a),
        audio2_aligned=blob_b if blob_b is not None else encode(pcm_b),
        alignment_info=AlignmentInfo(
            padding_added=padding_added,
            final_duration=final_duration,
            method=AlignmentMethod.END_PADDING,
        ),
    )


def alignment_quality(
    target: Optional[SpeechBoundaries],
    user: Optional[SpeechBoundaries],
    user_trimmed_start: float = 0.0,
    user_trimmed_end: float = 0.0,
) -> float:
    """
    Heuristic score in [0, 1] for how comparable two clips are.

    Weighted sum of speech duration similarity (0.4), onset agreement within
    two seconds (0.3) and the product of both detection confidences (0.3).
    Returns 0.3 when either side has no boundaries.
    """
    if target is None or user is None:
        return 0.3

    target_speech = target.end_time - target.start_time
    user_speech = user.end_time - user.start_time - user_trimmed_start - user_trimmed_end

    longest = max(target_speech, user_speech)
    if longest > 0:
        duration_similarity = 1 - min(1.0, abs(target_speech - user_speech) / longest)
    else:
        duration_similarity = 0.0

    onset_alignment = 1 - min(1.0, abs(target.start_time - (user.start_time - user_trimmed_start)) / 2.0)

    # unscored boundaries count as a moderate 0.7
    target_conf = target.confidence_score or 0.7
    user_conf = user.confidence_score or 0.7

    quality = duration_similarity * 0.4 + onset_alignment * 0.3 + target_conf * user_conf * 0.3
    return max(0.0, min(1.0, quality))
