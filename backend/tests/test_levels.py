"""Unit tests for level and loudness analysis."""
import itertools
import math

import numpy as np
import pytest

from accentshadow.audio.codec import encode
from accentshadow.audio.levels import LevelAnalyzer, lufs, normalization_gains, peak, rms
from accentshadow.audio.models import AudioLevelInfo, PcmBuffer
from accentshadow.audio.options import BalanceMode, LevelOptions
from accentshadow.core.errors import DecodeError
from synthetic_audio import speech_clip


def _level(lufs_value):
    return AudioLevelInfo(rms=0.1, peak=0.5, duration=1.0, sample_rate=16000, lufs=lufs_value)


def test_lufs_of_silence_is_negative_infinity():
    """Test that an all-zero buffer has no loudness."""
    assert lufs(PcmBuffer.silence(2, 48000, 48000)) == float("-inf")


def test_lufs_of_clip_shorter_than_a_block():
    """Test that clips without a complete 400ms block are treated as silent."""
    assert lufs(speech_clip(0.3, 0.0, 0.3)) == float("-inf")


def test_lufs_of_constant_signal():
    """Test block loudness against the closed form for a constant signal."""
    pcm = PcmBuffer(np.full((1, 16000), 0.5, dtype=np.float32), 16000)

    assert lufs(pcm) == pytest.approx(-0.691 + 10 * math.log10(0.25), abs=1e-6)


def test_lufs_ignores_silent_blocks():
    """Test that silent blocks are skipped rather than averaged in."""
    loud = np.full(16000, 0.5, dtype=np.float32)
    pcm = PcmBuffer(np.concatenate([loud, np.zeros(32000, dtype=np.float32)]).reshape(1, -1), 16000)

    assert lufs(pcm) > -0.691 + 10 * math.log10(0.25) - 3.0


def test_rms_and_peak_pool_channels():
    """Test that RMS and peak span all channels."""
    pcm = PcmBuffer(np.array([[0.5, -0.5], [0.0, 0.0]], dtype=np.float32), 8000)

    assert rms(pcm) == pytest.approx(math.sqrt(0.125))
    assert peak(pcm) == pytest.approx(0.5)


def test_average_mode_balances_close_levels():
    """Test that similar clips meet at their average loudness."""
    gains = normalization_gains(_level(-20.0), _level(-22.0))

    assert gains.reference_lufs == pytest.approx(-21.0)
    assert gains.target_gain == pytest.approx(10 ** (-1 / 20))
    assert gains.user_gain == pytest.approx(10 ** (1 / 20))


def test_average_mode_pins_to_target_on_large_spread():
    """Test that a spread over 12 dB uses the target loudness instead of the average."""
    gains = normalization_gains(_level(-10.0), _level(-30.0))

    assert gains.reference_lufs == pytest.approx(-18.0)
    assert gains.target_gain == pytest.approx(10 ** (-8 / 20))
    assert gains.user_gain == pytest.approx(10 ** (12 / 20))


def test_reference_far_from_target_is_clamped():
    """Test that a reference more than 6 dB off the target is replaced by it."""
    gains = normalization_gains(_level(-32.0), _level(-33.0), LevelOptions(balance_mode=BalanceMode.TARGET))

    assert gains.reference_lufs == pytest.approx(-18.0)
    assert gains.target_gain == pytest.approx(4.0)


def test_gains_stay_within_bounds():
    """Test that gains are always within [0.1, max_gain], silence included."""
    values = [float("-inf"), -70.0, -40.0, -24.0, -18.0, -12.0, -3.0, 0.0]
    for mode in BalanceMode:
        options = LevelOptions(max_gain=4.0, balance_mode=mode)
        for target, user in itertools.product(values, repeat=2):
            gains = normalization_gains(_level(target), _level(user), options)
            assert 0.1 <= gains.target_gain <= 4.0
            assert 0.1 <= gains.user_gain <= 4.0


def test_level_info_serializes_silence_as_null():
    """Test that -inf loudness is emitted as None."""
    assert _level(float("-inf")).to_dict()["lufs"] is None


def test_analyzer_caches_by_size_type_and_timestamp():
    """Test cache hits for a repeated key and eviction of the oldest entry."""
    analyzer = LevelAnalyzer(max_entries=1)
    blob = encode(speech_clip(1.0, 0.2, 0.8))

    first = analyzer.analyze(blob, "audio/wav", 1.0)
    second = analyzer.analyze(blob, "audio/wav", 1.0)
    assert second is first
    assert analyzer.stats()["hits"] == 1

    analyzer.analyze(blob, "audio/wav", 2.0)
    third = analyzer.analyze(blob, "audio/wav", 1.0)
    assert third is not first
    assert analyzer.stats()["size"] == 1

    analyzer.clear()
    assert analyzer.stats() == {"size": 0, "maxEntries": 1, "hits": 0, "misses": 0}


def test_analyzer_without_timestamp_measures_every_clip():
    """Test that equal-length clips without a timestamp do not share a cached level."""
    analyzer = LevelAnalyzer()
    loud = encode(speech_clip(1.0, 0.0, 1.0, amplitude=0.8))
    quiet = encode(speech_clip(1.0, 0.0, 1.0, amplitude=0.01))
    assert len(loud) == len(quiet)

    loud_level = analyzer.analyze(loud, "audio/wav")
    quiet_level = analyzer.analyze(quiet, "audio/wav")

    assert loud_level.lufs - quiet_level.lufs == pytest.approx(20 * math.log10(80), abs=0.1)
    assert analyzer.stats()["size"] == 0


def test_analyzer_rejects_undecodable_audio():
    """Test that analysis of bad bytes raises DecodeError."""
    with pytest.raises(DecodeError):
        LevelAnalyzer().analyze(b"")
