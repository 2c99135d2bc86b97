"""Per-clip processing pipeline: decode -> VAD -> resolve -> trim/align -> encode.

All functions take their dependencies (detector adapter, option structs)
as parameters. Only decode failures are reported as errors; every other
failure degrades to passing the audio through unmodified.
"""
import asyncio
from typing import Optional

from accentshadow.audio.alignment import align_pair, alignment_quality
from accentshadow.audio.boundaries import fallback_boundaries, resolve_boundaries
from accentshadow.audio.codec import decode
from accentshadow.audio.dsp.effects import apply_effects
from accentshadow.audio.models import (
    AlignmentClip,
    AlignmentResult,
    BoundaryStatus,
    DetectorUnavailable,
    PcmBuffer,
    ProcessingResult,
    RecordingAlignment,
    SilenceInfo,
    SpeechBoundaries,
    TrimResult,
)
from accentshadow.audio.options import AlignmentOptions, EffectsConfig, TrimOptions, VadConfig
from accentshadow.audio.trimming import trim
from accentshadow.audio.vad_adapter import VadAdapter
from accentshadow.core.errors import DecodeError
from accentshadow.core.logging import logger

# A trim shorter than this at both ends is not worth replacing the blob for
MIN_REPORTED_TRIM_S = 0.05


async def detect_boundaries_pcm(
    pcm: PcmBuffer,
    adapter: VadAdapter,
    config: Optional[VadConfig] = None,
    effects: Optional[EffectsConfig] = None,
) -> SpeechBoundaries:
    """Run the detector on a decoded clip and resolve its speech envelope."""
    config = config or adapter.config
    if effects is not None:
        pcm, _ = apply_effects(pcm, effects, for_vad=True)

    outcome = await adapter.detect_raw_segments(pcm.mono(), pcm.sample_rate, config)
    if isinstance(outcome, DetectorUnavailable):
        return fallback_boundaries(pcm.duration, pcm.sample_rate, BoundaryStatus.VAD_UNAVAILABLE, outcome.reason)

    return resolve_boundaries(
        outcome.segments,
        pcm.duration,
        pcm.sample_rate,
        merge_gap=config.merge_gap,
        padding=config.boundary_padding,
    )


async def detect_speech_boundaries(
    data: bytes,
    adapter: VadAdapter,
    config: Optional[VadConfig] = None,
) -> SpeechBoundaries:
    """
    Detect the speech envelope of an encoded clip.

    Never raises for bad audio: a blob that cannot be decoded yields
    fallback boundaries with status decode_failed and the error message.
    """
    try:
        pcm = decode(data)
    except DecodeError as e:
        logger.warning(f"Cannot detect speech boundaries: {e}")
        return fallback_boundaries(0.0, 0, BoundaryStatus.DECODE_FAILED, str(e))

    return await detect_boundaries_pcm(pcm, adapter, config)


async def trim_audio_with_vad(
    data: bytes,
    adapter: VadAdapter,
    config: Optional[VadConfig] = None,
    options: Optional[TrimOptions] = None,
    boundaries: Optional[SpeechBoundaries] = None,
) -> TrimResult:
    """
    Trim leading and trailing silence from an encoded clip.

    Args:
        data: Encoded clip
        adapter: Speech detector
        config: Detector options
        options: Trim padding and caps
        boundaries: Precomputed unpadded boundaries; detected when omitted

    Returns:
        TrimResult; the original blob with zero trims whenever trimming is
        skipped or impossible
    """
    options = options or TrimOptions()
    try:
        pcm = decode(data)
    except DecodeError as e:
        logger.warning(f"Cannot trim audio: {e}")
        return TrimResult(
            blob=data,
            trimmed_start=0.0,
            trimmed_end=0.0,
            original_duration=0.0,
            new_duration=0.0,
            boundaries=fallback_boundaries(0.0, 0, BoundaryStatus.DECODE_FAILED, str(e)),
            error=str(e),
        )

    if boundaries is None:
        boundaries = await detect_boundaries_pcm(pcm, adapter, config)

    return trim(pcm, boundaries, options, original_blob=data)


async def process_audio(
    data: bytes,
    adapter: VadAdapter,
    config: Optional[VadConfig] = None,
    options: Optional[TrimOptions] = None,
    trim_silence: bool = True,
    effects: Optional[EffectsConfig] = None,
) -> ProcessingResult:
    """
    Detect speech, optionally trim, and report silence amounts.

    A trim is only applied when it removes more than 50 ms at either end.
    """
    options = options or TrimOptions()
    try:
        pcm = decode(data)
    except DecodeError as e:
        logger.warning(f"Cannot process audio: {e}")
        return ProcessingResult(
            blob=data,
            boundaries=fallback_boundaries(0.0, 0, BoundaryStatus.DECODE_FAILED, str(e)),
            silence_info=SilenceInfo(original_silence_start=0.0, original_silence_end=0.0),
            vad_used=False,
            error=str(e),
        )

    boundaries = await detect_boundaries_pcm(pcm, adapter, config, effects=effects)
    silence_info = SilenceInfo(
        original_silence_start=boundaries.silence_start,
        original_silence_end=boundaries.silence_end,
        final_silence_start=boundaries.silence_start,
        final_silence_end=boundaries.silence_end,
    )
    blob = data

    wants_trim = boundaries.silence_start > options.min_silence or boundaries.silence_end > options.min_silence
    if trim_silence and wants_trim:
        result = trim(pcm, boundaries, options, original_blob=data)
        if result.trimmed_start > MIN_REPORTED_TRIM_S or result.trimmed_end > MIN_REPORTED_TRIM_S:
            blob = result.blob
            silence_info = SilenceInfo(
                original_silence_start=boundaries.silence_start,
                original_silence_end=boundaries.silence_end,
                trimmed_start=result.trimmed_start,
                trimmed_end=result.trimmed_end,
                final_silence_start=max(0.0, boundaries.silence_start - result.trimmed_start),
                final_silence_end=max(0.0, boundaries.silence_end - result.trimmed_end),
            )

    return ProcessingResult(
        blob=blob,
        boundaries=boundaries,
        silence_info=silence_info,
        vad_used=boundaries.status != BoundaryStatus.VAD_UNAVAILABLE and adapter.ready,
    )


async def align_two_audios(
    clip_a: AlignmentClip,
    clip_b: AlignmentClip,
    options: Optional[AlignmentOptions] = None,
) -> AlignmentResult:
    """Onset alignment of two processed clips, off the event loop."""
    return await asyncio.to_thread(align_pair, clip_a, clip_b, options or AlignmentOptions())


async def align_recordings(
    target_blob: bytes,
    user_blob: bytes,
    adapter: VadAdapter,
    config: Optional[VadConfig] = None,
    options: Optional[AlignmentOptions] = None,
) -> RecordingAlignment:
    """
    Align a raw target recording and a raw user attempt.

    Both clips run through detection concurrently, then meet in the onset
    alignment step. config should carry the wider alignment merge gap.
    """
    logger.info("Starting VAD-based audio alignment")
    target, user = await asyncio.gather(
        process_audio(target_blob, adapter, config, trim_silence=False),
        process_audio(user_blob, adapter, config, trim_silence=False),
    )

    alignment = await align_two_audios(
        AlignmentClip(blob=target.blob, boundaries=target.boundaries),
        AlignmentClip(blob=user.blob, boundaries=user.boundaries),
        options,
    )

    quality = alignment_quality(
        None if target.boundaries.vad_failed else target.boundaries,
        None if user.boundaries.vad_failed else user.boundaries,
    )
    logger.info(
        f"VAD alignment complete: method={alignment.alignment_info.method.value}, "
        f"quality={quality:.2f}, vadUsed={target.vad_used and user.vad_used}"
    )
    return RecordingAlignment(target=target, user=user, alignment=alignment, alignment_quality=quality)
