"""Tests for the per-clip pipeline and its degradation paths."""
import asyncio

import pytest

from accentshadow.audio.codec import decode
from accentshadow.audio.dsp.vad import EnergyModel
from accentshadow.audio.models import AlignmentMethod, BoundaryStatus
from accentshadow.audio.options import AlignmentOptions, TrimOptions, VadConfig
from accentshadow.audio.pipeline import (
    align_recordings,
    detect_speech_boundaries,
    process_audio,
    trim_audio_with_vad,
)
from accentshadow.audio.vad_adapter import VadAdapter
from synthetic_audio import speech_wav


def _energy_adapter():
    return VadAdapter(EnergyModel)


def _unavailable_adapter():
    def loader():
        raise RuntimeError("detector failed to load")
    return VadAdapter(loader)


def test_unavailable_detector_keeps_whole_clip():
    """Test that an unavailable detector yields whole-clip boundaries and no trim."""
    data = speech_wav(3.0, 1.0, 2.0)
    adapter = _unavailable_adapter()

    boundaries = asyncio.run(detect_speech_boundaries(data, adapter))
    result = asyncio.run(trim_audio_with_vad(data, adapter))

    assert boundaries.vad_failed is True
    assert boundaries.status == BoundaryStatus.VAD_UNAVAILABLE
    assert boundaries.start_time == 0.0
    assert boundaries.end_time == pytest.approx(3.0)
    assert result.blob is data
    assert result.trimmed_start == 0.0
    assert result.trimmed_end == 0.0


def test_zero_byte_blob_returns_fallback_boundaries():
    """Test that a decode failure is reported in the boundaries instead of raised."""
    boundaries = asyncio.run(detect_speech_boundaries(b"", _energy_adapter()))

    assert boundaries.vad_failed is True
    assert boundaries.status == BoundaryStatus.DECODE_FAILED
    assert boundaries.error


def test_detect_speech_boundaries_with_energy_detector():
    """Test the envelope of a tone detected end to end."""
    boundaries = asyncio.run(detect_speech_boundaries(speech_wav(3.0, 1.0, 2.0), _energy_adapter()))

    assert boundaries.status == BoundaryStatus.DETECTED
    assert boundaries.original_speech_start == pytest.approx(1.0, abs=0.2)
    assert boundaries.original_speech_end == pytest.approx(2.0, abs=0.2)
    assert boundaries.start_time == pytest.approx(boundaries.original_speech_start - 0.1)
    assert boundaries.end_time == pytest.approx(boundaries.original_speech_end + 0.1)
    assert boundaries.silence_start == boundaries.start_time


def test_process_audio_trims_and_reports_silence():
    """Test that processing trims long silences and reports what is left."""
    data = speech_wav(3.0, 1.0, 2.0)

    result = asyncio.run(process_audio(data, _energy_adapter(), options=TrimOptions(padding=0.15)))

    info = result.silence_info
    assert result.vad_used is True
    assert result.blob is not data
    assert 0.5 < info.trimmed_start < 1.0
    assert 0.5 < info.trimmed_end < 1.0
    assert info.final_silence_start == pytest.approx(0.15, abs=1e-3)
    assert info.final_silence_end == pytest.approx(0.15, abs=1e-3)
    assert decode(result.blob).duration == pytest.approx(3.0 - info.trimmed_start - info.trimmed_end, abs=1e-3)


def test_process_audio_without_trim_keeps_blob():
    """Test that trimming can be turned off while still reporting silence."""
    data = speech_wav(3.0, 1.0, 2.0)

    result = asyncio.run(process_audio(data, _energy_adapter(), trim_silence=False))

    assert result.blob is data
    assert result.silence_info.original_silence_start > 0.5
    assert result.silence_info.trimmed_start == 0.0


def test_process_audio_decode_failure():
    """Test that undecodable input passes through with an error."""
    result = asyncio.run(process_audio(b"not audio", _energy_adapter()))

    assert result.blob == b"not audio"
    assert result.vad_used is False
    assert result.error


def test_align_recordings_end_to_end():
    """Test that raw target and user clips come out with equal durations."""
    target = speech_wav(3.0, 0.5, 2.0)
    user = speech_wav(1.5, 0.1, 1.0)

    result = asyncio.run(align_recordings(
        target, user, _energy_adapter(), VadConfig(merge_gap=0.5), AlignmentOptions(padding_ms=200)
    ))

    first = decode(result.alignment.audio1_aligned)
    second = decode(result.alignment.audio2_aligned)
    assert result.alignment.alignment_info.method == AlignmentMethod.END_PADDING
    assert first.length == second.length
    assert 0.0 <= result.alignment_quality <= 1.0
    assert result.target.vad_used and result.user.vad_used


def test_align_recordings_with_unavailable_detector():
    """Test that alignment still equalizes durations using whole-clip boundaries."""
    target = speech_wav(2.0, 0.5, 1.5)
    user = speech_wav(1.0, 0.1, 0.9)

    result = asyncio.run(align_recordings(target, user, _unavailable_adapter()))

    first = decode(result.alignment.audio1_aligned)
    second = decode(result.alignment.audio2_aligned)
    assert first.length == second.length
    assert result.alignment_quality == pytest.approx(0.3)
    assert result.target.vad_used is False


def test_trim_keeps_envelope_and_trim_padding_around_speech():
    """Test that a trim keeps 100 ms of envelope padding plus 150 ms of trim padding."""
    data = speech_wav(3.0, 1.0, 2.0)

    result = asyncio.run(trim_audio_with_vad(data, _energy_adapter()))

    boundaries = result.boundaries
    assert result.trimmed_start == pytest.approx(boundaries.original_speech_start - 0.25, abs=1e-3)
    assert result.trimmed_end == pytest.approx(3.0 - boundaries.original_speech_end - 0.25, abs=1e-3)


def test_record_padding_widens_envelope_with_floor():
    """Test that the record's padding reaches the envelope but never drops below 100 ms."""
    data = speech_wav(3.0, 1.0, 2.0)
    wide = VadConfig().with_record({"padding": 0.3})
    narrow = VadConfig().with_record({"padding": 0.02})

    assert narrow.boundary_padding == pytest.approx(0.1)

    boundaries = asyncio.run(detect_speech_boundaries(data, _energy_adapter(), wide))
    assert boundaries.start_time == pytest.approx(boundaries.original_speech_start - 0.3)
    assert boundaries.end_time == pytest.approx(boundaries.original_speech_end + 0.3)
