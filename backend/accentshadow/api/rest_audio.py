"""REST endpoints for speech boundary detection, trimming, alignment, levels and effects.

Audio comes in as multipart uploads and goes back as base64-encoded WAV
inside JSON. Settings-store records are passed as a JSON string form field.
"""
import asyncio
import base64
import json
from dataclasses import replace
from typing import Optional

from fastapi import APIRouter, File, Form, HTTPException, Request, UploadFile
from pydantic import BaseModel

from accentshadow.audio.boundaries import fallback_boundaries
from accentshadow.audio.codec import decode, encode
from accentshadow.audio.dsp.effects import process_blob
from accentshadow.audio.dsp.gain import apply_gain
from accentshadow.audio.levels import analyze_level, normalization_gains
from accentshadow.audio.models import (
    AlignmentClip,
    AudioLevelInfo,
    BoundaryStatus,
    ProcessingResult,
    SpeechBoundaries,
)
from accentshadow.audio.options import BalanceMode, EffectsConfig, LevelOptions
from accentshadow.audio.pipeline import (
    align_recordings,
    align_two_audios,
    detect_speech_boundaries,
    process_audio,
    trim_audio_with_vad,
)
from accentshadow.core.errors import DecodeError
from accentshadow.core.logging import logger

router = APIRouter(prefix="/audio")


def _encode_blob(blob: bytes) -> str:
    return base64.b64encode(blob).decode("ascii")


def _parse_record(raw: Optional[str], field: str) -> Optional[dict]:
    if not raw:
        return None
    try:
        record = json.loads(raw)
    except json.JSONDecodeError as e:
        raise HTTPException(status_code=400, detail=f"Invalid JSON in {field}: {e}")
    if not isinstance(record, dict):
        raise HTTPException(status_code=400, detail=f"{field} must be a JSON object")
    return record


def _processing_to_dict(result: ProcessingResult) -> dict:
    return {
        "audio": _encode_blob(result.blob),
        "boundaries": result.boundaries.to_dict(),
        "silenceInfo": result.silence_info.to_dict(),
        "vadUsed": result.vad_used,
        "error": result.error,
    }


class LevelPayload(BaseModel):
    rms: float = 0.0
    peak: float = 0.0
    duration: float = 0.0
    sampleRate: int = 0
    lufs: Optional[float] = None  # null means silence (-inf)

    def to_level_info(self) -> AudioLevelInfo:
        return AudioLevelInfo(
            rms=self.rms,
            peak=self.peak,
            duration=self.duration,
            sample_rate=self.sampleRate,
            lufs=float("-inf") if self.lufs is None else self.lufs,
        )


class NormalizationRequest(BaseModel):
    target: LevelPayload
    user: LevelPayload
    targetLUFS: Optional[float] = None
    maxGain: Optional[float] = None
    balanceMode: BalanceMode = BalanceMode.AVERAGE


@router.post("/boundaries")
async def speech_boundaries(
    request: Request,
    file: UploadFile = File(...),
    options: Optional[str] = Form(None),
):
    """
    Detect the speech envelope of a clip.

    Returns:
        Boundary record; vadFailed with whole-clip bounds when detection is
        impossible (including undecodable audio)
    """
    context = request.app.state.processing
    config = context.vad_config.with_record(_parse_record(options, "options"))
    boundaries = await detect_speech_boundaries(await file.read(), context.adapter, config)
    return boundaries.to_dict()


@router.post("/trim")
async def trim_silence(
    request: Request,
    file: UploadFile = File(...),
    options: Optional[str] = Form(None),
):
    """
    Trim leading and trailing silence.

    Returns:
        Trimmed audio plus trim amounts in seconds
    """
    context = request.app.state.processing
    record = _parse_record(options, "options")
    result = await trim_audio_with_vad(
        await file.read(),
        context.adapter,
        context.vad_config.with_record(record),
        context.trim_options.with_record(record),
    )
    return {
        "audio": _encode_blob(result.blob),
        "trimmedStart": result.trimmed_start,
        "trimmedEnd": result.trimmed_end,
        "originalDuration": result.original_duration,
        "newDuration": result.new_duration,
        "boundaries": result.boundaries.to_dict() if result.boundaries else None,
        "error": result.error,
    }


@router.post("/process")
async def process(
    request: Request,
    file: UploadFile = File(...),
    options: Optional[str] = Form(None),
    trim: bool = Form(True),
    effects: Optional[str] = Form(None),
):
    """
    Detect speech, optionally trim, and report silence amounts.

    Returns:
        Processed audio, boundaries, silenceInfo and vadUsed
    """
    context = request.app.state.processing
    record = _parse_record(options, "options")
    effects_record = _parse_record(effects, "effects")
    result = await process_audio(
        await file.read(),
        context.adapter,
        context.vad_config.with_record(record),
        context.trim_options.with_record(record),
        trim_silence=trim,
        effects=EffectsConfig.from_record(effects_record) if effects_record else None,
    )
    return _processing_to_dict(result)


async def _client_boundaries(blob: bytes, raw: Optional[str], field: str, context) -> SpeechBoundaries:
    record = _parse_record(raw, field)
    if record is None:
        return await detect_speech_boundaries(blob, context.adapter, context.alignment_vad_config)
    try:
        pcm = await asyncio.to_thread(decode, blob)
    except DecodeError as e:
        return fallback_boundaries(0.0, 0, BoundaryStatus.DECODE_FAILED, str(e))
    try:
        return SpeechBoundaries.from_dict(record, pcm.duration, pcm.sample_rate)
    except (TypeError, ValueError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid {field}: {e}")


@router.post("/align")
async def align(
    request: Request,
    audio1: UploadFile = File(...),
    audio2: UploadFile = File(...),
    boundaries1: Optional[str] = Form(None),
    boundaries2: Optional[str] = Form(None),
    already_normalized1: bool = Form(False),
    already_normalized2: bool = Form(False),
    padding_ms: Optional[int] = Form(None),
):
    """
    Align two processed clips so their speech onsets and durations match.

    Boundaries not supplied by the client are detected here.

    Returns:
        Both aligned clips and alignmentInfo
    """
    context = request.app.state.processing
    blob1, blob2 = await audio1.read(), await audio2.read()
    b1, b2 = await asyncio.gather(
        _client_boundaries(blob1, boundaries1, "boundaries1", context),
        _client_boundaries(blob2, boundaries2, "boundaries2", context),
    )

    options = context.alignment_options
    if padding_ms is not None:
        options = replace(options, padding_ms=padding_ms)

    result = await align_two_audios(
        AlignmentClip(blob=blob1, boundaries=b1, already_normalized=already_normalized1),
        AlignmentClip(blob=blob2, boundaries=b2, already_normalized=already_normalized2),
        options,
    )
    return {
        "audio1": _encode_blob(result.audio1_aligned),
        "audio2": _encode_blob(result.audio2_aligned),
        "alignmentInfo": result.alignment_info.to_dict(),
    }


@router.post("/align-recordings")
async def align_raw_recordings(
    request: Request,
    target: UploadFile = File(...),
    user: UploadFile = File(...),
    options: Optional[str] = Form(None),
):
    """
    Process a raw target and user recording and align them.

    Returns:
        Aligned audio, per-clip processing results, alignmentInfo and alignmentQuality
    """
    context = request.app.state.processing
    config = context.alignment_vad_config.with_record(_parse_record(options, "options"))
    result = await align_recordings(
        await target.read(),
        await user.read(),
        context.adapter,
        config,
        context.alignment_options,
    )
    return {
        "targetAudio": _encode_blob(result.alignment.audio1_aligned),
        "userAudio": _encode_blob(result.alignment.audio2_aligned),
        "alignmentInfo": result.alignment.alignment_info.to_dict(),
        "alignmentQuality": result.alignment_quality,
        "vadUsed": result.target.vad_used and result.user.vad_used,
        "target": _processing_to_dict(result.target),
        "user": _processing_to_dict(result.user),
    }


@router.post("/levels")
async def levels(
    request: Request,
    file: UploadFile = File(...),
    timestamp: Optional[float] = Form(None),
):
    """
    RMS, peak and LUFS of a clip.

    Results are cached by (size, content type, timestamp) when a timestamp is sent.

    Raises:
        DecodeError: if the audio cannot be decoded (answered with 422)
    """
    context = request.app.state.processing
    data = await file.read()
    info = await asyncio.to_thread(context.level_analyzer.analyze, data, file.content_type, timestamp)
    return info.to_dict()


@router.post("/levels/clear-cache")
async def clear_level_cache(request: Request):
    context = request.app.state.processing
    context.level_analyzer.clear()
    return context.level_analyzer.stats()


@router.post("/normalization-gains")
async def gains(request: Request, payload: NormalizationRequest):
    """
    Gains that bring two measured clips to a common loudness.

    Returns:
        targetGain, userGain and referenceLUFS
    """
    defaults = request.app.state.processing.level_options
    options = LevelOptions(
        target_lufs=defaults.target_lufs if payload.targetLUFS is None else payload.targetLUFS,
        max_gain=defaults.max_gain if payload.maxGain is None else payload.maxGain,
        min_gain=defaults.min_gain,
        balance_mode=payload.balanceMode,
    )
    return normalization_gains(payload.target.to_level_info(), payload.user.to_level_info(), options).to_dict()


@router.post("/normalize-pair")
async def normalize_pair(
    request: Request,
    target: UploadFile = File(...),
    user: UploadFile = File(...),
    balance_mode: BalanceMode = Form(BalanceMode.AVERAGE),
):
    """
    Measure two clips and apply matching gains to both.

    Raises:
        DecodeError: if either clip cannot be decoded (answered with 422)
    """
    context = request.app.state.processing
    defaults = context.level_options
    options = LevelOptions(
        target_lufs=defaults.target_lufs,
        max_gain=defaults.max_gain,
        min_gain=defaults.min_gain,
        balance_mode=balance_mode,
    )
    target_data, user_data = await target.read(), await user.read()

    def run():
        target_pcm, user_pcm = decode(target_data), decode(user_data)
        target_level, user_level = analyze_level(target_pcm), analyze_level(user_pcm)
        result = normalization_gains(target_level, user_level, options)
        target_out = apply_gain(target_pcm, result.target_gain, options.min_gain, options.max_gain)
        user_out = apply_gain(user_pcm, result.user_gain, options.min_gain, options.max_gain)
        return result, encode(target_out), encode(user_out)

    result, target_blob, user_blob = await asyncio.to_thread(run)

    logger.info(f"Normalized pair: target x{result.target_gain:.2f}, user x{result.user_gain:.2f}")
    return {
        "targetAudio": _encode_blob(target_blob),
        "userAudio": _encode_blob(user_blob),
        "gains": result.to_dict(),
    }


@router.post("/effects")
async def effects(
    file: UploadFile = File(...),
    config: Optional[str] = Form(None),
    for_vad: bool = Form(False),
):
    """
    Apply the post-processing effects chain (EQ, compression, gain).

    Raises:
        DecodeError: if effects are enabled and the audio cannot be decoded (answered with 422)
    """
    effects_config = EffectsConfig.from_record(_parse_record(config, "config"))
    data = await file.read()
    result = await asyncio.to_thread(process_blob, data, effects_config, for_vad)

    response = result.to_dict()
    response["audio"] = _encode_blob(result.blob)
    return response
