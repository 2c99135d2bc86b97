"""Decoding incoming audio blobs and encoding processed PCM back to WAV."""
import io
import math
import wave

import numpy as np
import soundfile as sf

from accentshadow.audio.models import PcmBuffer
from accentshadow.core.errors import DecodeError
from accentshadow.core.logging import logger


def decode(data: bytes) -> PcmBuffer:
    """
    Decode compressed or container audio bytes into a float32 PCM buffer.

    libsndfile handles WAV/FLAC/Ogg/MP3 directly. Containers it rejects
    (WebM/Opus from MediaRecorder, AAC) go through pydub and ffmpeg.

    Args:
        data: Encoded audio bytes

    Returns:
        PcmBuffer with the source channel count and sample rate

    Raises:
        DecodeError: if the bytes are empty or no decoder accepts them
    """
    if not data:
        raise DecodeError("Empty audio data")

    try:
        samples, sample_rate = sf.read(io.BytesIO(data), dtype="float32", always_2d=True)
    except (RuntimeError, TypeError, ValueError) as e:
        logger.debug(f"libsndfile could not decode {len(data)} bytes ({e}), trying ffmpeg")
        return _decode_with_ffmpeg(data)

    if samples.shape[1] == 0:
        raise DecodeError("Decoded audio has no channels")

    return PcmBuffer(np.ascontiguousarray(samples.T), int(sample_rate))


def _decode_with_ffmpeg(data: bytes) -> PcmBuffer:
    """Decode anything ffmpeg understands via pydub."""
    try:
        from pydub import AudioSegment
        segment = AudioSegment.from_file(io.BytesIO(data))
    except Exception as e:
        raise DecodeError(f"Unsupported or malformed audio: {e}") from e

    channels = segment.channels
    if channels < 1 or segment.frame_rate <= 0:
        raise DecodeError("Decoded audio has no channels")

    raw = np.array(segment.get_array_of_samples())
    full_scale = float(1 << (8 * segment.sample_width - 1))
    samples = (raw.astype(np.float32) / full_scale).reshape(-1, channels).T

    return PcmBuffer(np.ascontiguousarray(samples), int(segment.frame_rate))


def quantize(samples: np.ndarray) -> np.ndarray:
    """
    Convert float samples to int16.

    Clamps to [-1, 1], scales negatives by 32768 and positives by 32767,
    then rounds to nearest.
    """
    clipped = np.clip(samples, -1.0, 1.0).astype(np.float64)
    scaled = np.where(clipped < 0, clipped * 32768.0, clipped * 32767.0)
    return np.round(scaled).astype(np.int16)


def encode(pcm: PcmBuffer) -> bytes:
    """
    Encode a PCM buffer as a 16-bit little-endian RIFF/WAVE byte stream.

    Channel count and sample rate are kept from the buffer.

    Args:
        pcm: Buffer to encode

    Returns:
        WAV bytes with the standard 44-byte header
    """
    interleaved = np.ascontiguousarray(quantize(pcm.samples).T).astype("<i2")

    out = io.BytesIO()
    with wave.open(out, "wb") as wav:
        wav.setnchannels(pcm.num_channels)
        wav.setsampwidth(2)
        wav.setframerate(pcm.sample_rate)
        wav.writeframes(interleaved.tobytes())
    return out.getvalue()


def resample(pcm: PcmBuffer, target_rate: int) -> PcmBuffer:
    """
    Resample with a polyphase FIR filter.

    Output length is ceil(length * target / source), so duration is kept
    within one sample.
    """
    if target_rate <= 0:
        raise ValueError(f"Invalid target sample rate: {target_rate}")
    if pcm.sample_rate == target_rate:
        return pcm
    if pcm.length == 0:
        return PcmBuffer.silence(pcm.num_channels, 0, target_rate)

    from scipy import signal

    g = math.gcd(pcm.sample_rate, target_rate)
    up, down = target_rate // g, pcm.sample_rate // g
    resampled = signal.resample_poly(pcm.samples.astype(np.float64), up, down, axis=1)
    return PcmBuffer(resampled.astype(np.float32), target_rate)


def resample_mono(samples: np.ndarray, sample_rate: int, target_rate: int) -> np.ndarray:
    """Resample a single channel."""
    return resample(PcmBuffer.from_mono(samples, sample_rate), target_rate).samples[0]
