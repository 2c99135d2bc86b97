"""Unit tests for the post-processing effects chain."""
import numpy as np
import pytest

from accentshadow.audio.codec import decode, encode
from accentshadow.audio.dsp.effects import apply_compression, apply_effects, apply_eq, process_blob
from accentshadow.audio.models import PcmBuffer
from accentshadow.audio.options import CompressionConfig, EffectsConfig, EqConfig, GainConfig
from accentshadow.core.errors import DecodeError
from synthetic_audio import speech_clip, tone


def test_no_effects_returns_original_blob():
    """Test that a disabled chain reports 'none' and keeps the blob."""
    blob = encode(speech_clip(0.5, 0.1, 0.4))

    result = process_blob(blob, EffectsConfig())

    assert result.blob is blob
    assert result.effects_applied == ["none"]


def test_vad_input_skips_effects_by_default():
    """Test that audio for speech detection is left alone unless applyToVAD is set."""
    pcm = speech_clip(0.5, 0.1, 0.4)
    config = EffectsConfig(gain=GainConfig(enabled=True, gain=0.5))

    processed, applied = apply_effects(pcm, config, for_vad=True)
    assert processed is pcm
    assert applied == ["none"]

    config = EffectsConfig(gain=GainConfig(enabled=True, gain=0.5), apply_to_vad=True)
    processed, applied = apply_effects(pcm, config, for_vad=True)
    assert applied == ["gain"]


def test_gain_scales_samples():
    """Test the linear gain stage."""
    pcm = speech_clip(0.5, 0.0, 0.5)
    processed, applied = apply_effects(pcm, EffectsConfig(gain=GainConfig(enabled=True, gain=0.5)))

    assert applied == ["gain"]
    assert np.allclose(processed.samples, pcm.samples * 0.5)


def test_chain_order():
    """Test that effects run as EQ, then compression, then gain."""
    config = EffectsConfig(
        compression=CompressionConfig(enabled=True),
        gain=GainConfig(enabled=True, gain=1.2),
        eq=EqConfig(enabled=True, low_gain=3.0),
    )
    processed, applied = apply_effects(speech_clip(1.0, 0.2, 0.8), config)

    assert applied == ["eq", "compression", "gain"]
    assert np.abs(processed.samples).max() <= 1.0


def test_flat_eq_is_transparent():
    """Test that 0 dB bands leave the signal unchanged."""
    samples = tone(4000, 16000).reshape(1, -1)
    assert np.allclose(apply_eq(samples, 16000, EqConfig(enabled=True)), samples)


def test_low_shelf_boosts_bass():
    """Test that a low-shelf boost raises a 100 Hz tone and barely touches 5 kHz."""
    low = tone(16000, 16000, freq=100.0, amplitude=0.1).reshape(1, -1)
    high = tone(16000, 16000, freq=5000.0, amplitude=0.1).reshape(1, -1)
    eq = EqConfig(enabled=True, low_gain=12.0)

    low_ratio = np.abs(apply_eq(low, 16000, eq)[:, 8000:]).max() / 0.1
    high_ratio = np.abs(apply_eq(high, 16000, eq)[:, 8000:]).max() / 0.1

    assert low_ratio > 3.0
    assert high_ratio == pytest.approx(1.0, abs=0.1)


def test_compression_reduces_loud_signal():
    """Test that a loud tone is attenuated once the compressor settles."""
    loud = tone(16000, 16000, amplitude=0.9).reshape(1, -1)

    compressed = apply_compression(loud, 16000, CompressionConfig(enabled=True))

    assert np.abs(compressed[:, 8000:]).max() < 0.5


def test_compression_leaves_quiet_signal():
    """Test that a tone well below the knee is not compressed."""
    quiet = tone(16000, 16000, amplitude=0.005).reshape(1, -1)

    compressed = apply_compression(quiet, 16000, CompressionConfig(enabled=True))

    assert np.allclose(compressed, quiet, atol=1e-6)


def test_process_blob_encodes_result():
    """Test that processed audio is re-encoded with the same layout."""
    pcm = PcmBuffer(np.full((2, 800), 0.4, dtype=np.float32), 8000)

    result = process_blob(encode(pcm), EffectsConfig(gain=GainConfig(enabled=True, gain=2.0)))

    decoded = decode(result.blob)
    assert result.effects_applied == ["gain"]
    assert decoded.num_channels == 2
    assert np.allclose(decoded.samples, 0.8, atol=1e-3)


def test_process_blob_undecodable_raises():
    """Test that enabled effects on bad bytes raise DecodeError."""
    with pytest.raises(DecodeError):
        process_blob(b"", EffectsConfig(gain=GainConfig(enabled=True, gain=2.0)))


def test_effects_config_from_record():
    """Test parsing and clamping of an effects record."""
    config = EffectsConfig.from_record({
        "compression": {"enabled": True, "ratio": 50},
        "gain": {"enabled": True, "gain": 5.0},
        "eq": {"enabled": False, "lowGain": -60},
        "applyToVAD": True,
    })

    assert config.compression.ratio == 20.0
    assert config.gain.gain == 2.0
    assert config.eq.low_gain == -40.0
    assert config.apply_to_vad is True
    assert config.any_enabled is True
