"""Speech envelope resolution from raw detector segments."""
import math
from typing import List, Optional, Sequence

from accentshadow.audio.models import BoundaryStatus, SpeechBoundaries, SpeechSegment
from accentshadow.core.errors import NoSpeechDetected
from accentshadow.core.logging import logger

# Clips expected to be ~80% speech get full confidence
EXPECTED_SPEECH_RATIO = 0.8


def merge_segments(segments: Sequence[SpeechSegment], max_gap: float) -> List[SpeechSegment]:
    """
    Merge segments separated by at most max_gap seconds.

    Segments are processed in start-time order; touching segments (gap 0)
    always merge. Merged lengths are summed.
    """
    if len(segments) <= 1:
        return list(segments)

    ordered = sorted(segments, key=lambda s: (s.start_time, s.end_time))
    merged = []
    current = ordered[0]

    for nxt in ordered[1:]:
        gap = nxt.start_time - current.end_time
        if gap <= max_gap:
            current = SpeechSegment(
                start_time=current.start_time,
                end_time=max(current.end_time, nxt.end_time),
                length=current.length + nxt.length,
            )
        else:
            merged.append(current)
            current = nxt

    merged.append(current)
    return merged


def fallback_boundaries(
    clip_duration: float,
    sample_rate: int,
    status: BoundaryStatus,
    error: Optional[str] = None,
) -> SpeechBoundaries:
    """Whole-clip boundaries used whenever detection cannot be trusted."""
    duration = max(0.0, clip_duration)
    return SpeechBoundaries(
        start_time=0.0,
        end_time=duration,
        start_sample=0,
        end_sample=int(math.floor(duration * sample_rate)),
        original_speech_start=0.0,
        original_speech_end=duration,
        silence_start=0.0,
        silence_end=0.0,
        speech_segments=0,
        confidence_score=0.0,
        clip_duration=duration,
        sample_rate=sample_rate,
        status=status,
        error=error,
    )


def resolve_boundaries(
    raw_segments: Sequence[SpeechSegment],
    clip_duration: float,
    sample_rate: int,
    merge_gap: float = 0.1,
    padding: float = 0.0,
) -> SpeechBoundaries:
    """
    Derive one speech envelope for a clip.

    Args:
        raw_segments: Detector output in the clip's timeline
        clip_duration: Clip length in seconds
        sample_rate: Native rate, used for the sample offsets
        merge_gap: Segments closer than this (seconds) are merged
        padding: Extra context added around startTime/endTime; the
            original_speech_* fields always hold the unpadded envelope

    Returns:
        SpeechBoundaries; status NO_SPEECH with whole-clip bounds when there
        are no segments
    """
    if not raw_segments:
        reason = NoSpeechDetected(f"No speech segments detected in {clip_duration:.2f}s clip")
        logger.warning(f"{reason} - using original audio without trimming")
        return fallback_boundaries(clip_duration, sample_rate, BoundaryStatus.NO_SPEECH, str(reason))

    merged = merge_segments(raw_segments, merge_gap)
    if len(merged) != len(raw_segments):
        logger.debug(f"Merged {len(raw_segments)} segments into {len(merged)}")

    speech_start = min(max(0.0, min(s.start_time for s in merged)), clip_duration)
    speech_end = min(clip_duration, max(speech_start, max(s.end_time for s in merged)))

    total_speech = sum(min(s.end_time, clip_duration) - max(s.start_time, 0.0) for s in merged)
    if clip_duration > 0:
        confidence = min(1.0, max(0.0, total_speech) / (clip_duration * EXPECTED_SPEECH_RATIO))
    else:
        confidence = 0.0

    start_time = max(0.0, speech_start - padding)
    end_time = min(clip_duration, speech_end + padding)

    boundaries = SpeechBoundaries(
        start_time=start_time,
        end_time=end_time,
        start_sample=int(math.floor(start_time * sample_rate)),
        end_sample=int(math.floor(end_time * sample_rate)),
        original_speech_start=speech_start,
        original_speech_end=speech_end,
        silence_start=start_time,
        silence_end=clip_duration - end_time,
        speech_segments=len(raw_segments),
        confidence_score=confidence,
        clip_duration=clip_duration,
        sample_rate=sample_rate,
    )

    logger.info(
        f"Speech envelope {start_time:.3f}s - {end_time:.3f}s "
        f"(silence {boundaries.silence_start:.3f}s / {boundaries.silence_end:.3f}s, "
        f"confidence {confidence * 100:.1f}%)"
    )
    return boundaries
