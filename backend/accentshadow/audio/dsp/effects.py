"""Post-processing effects: 3-band EQ, dynamics compression and gain."""
from dataclasses import dataclass
from typing import List, Tuple
import math
import time

import numpy as np

from accentshadow.audio.codec import decode, encode
from accentshadow.audio.models import PcmBuffer
from accentshadow.audio.options import CompressionConfig, EffectsConfig, EqConfig
from accentshadow.core.logging import logger

LOW_SHELF_HZ = 320.0
PEAKING_HZ = 1000.0
PEAKING_Q = 1.0
HIGH_SHELF_HZ = 3200.0

# Gain computer resolution for the compressor, in samples
COMPRESSOR_BLOCK = 128


@dataclass(frozen=True)
class EffectsResult:
    blob: bytes
    effects_applied: List[str]
    processing_time_ms: float = 0.0

    def to_dict(self) -> dict:
        return {
            "effectsApplied": list(self.effects_applied),
            "processingTimeMs": self.processing_time_ms,
        }


def _shelf_coefficients(kind: str, freq: float, gain_db: float, sample_rate: int) -> Tuple[np.ndarray, np.ndarray]:
    """RBJ cookbook shelving filter with shelf slope 1."""
    a = 10.0 ** (gain_db / 40.0)
    w0 = 2.0 * math.pi * freq / sample_rate
    cos_w0 = math.cos(w0)
    alpha = math.sin(w0) / 2.0 * math.sqrt(2.0)
    two_sqrt_a_alpha = 2.0 * math.sqrt(a) * alpha

    if kind == "lowshelf":
        b = [
            a * ((a + 1) - (a - 1) * cos_w0 + two_sqrt_a_alpha),
            2 * a * ((a - 1) - (a + 1) * cos_w0),
            a * ((a + 1) - (a - 1) * cos_w0 - two_sqrt_a_alpha),
        ]
        den = [
            (a + 1) + (a - 1) * cos_w0 + two_sqrt_a_alpha,
            -2 * ((a - 1) + (a + 1) * cos_w0),
            (a + 1) + (a - 1) * cos_w0 - two_sqrt_a_alpha,
        ]
    else:
        b = [
            a * ((a + 1) + (a - 1) * cos_w0 + two_sqrt_a_alpha),
            -2 * a * ((a - 1) + (a + 1) * cos_w0),
            a * ((a + 1) + (a - 1) * cos_w0 - two_sqrt_a_alpha),
        ]
        den = [
            (a + 1) - (a - 1) * cos_w0 + two_sqrt_a_alpha,
            2 * ((a - 1) - (a + 1) * cos_w0),
            (a + 1) - (a - 1) * cos_w0 - two_sqrt_a_alpha,
        ]
    return np.array(b) / den[0], np.array(den) / den[0]


def _peaking_coefficients(freq: float, q: float, gain_db: float, sample_rate: int) -> Tuple[np.ndarray, np.ndarray]:
    """RBJ cookbook peaking EQ."""
    a = 10.0 ** (gain_db / 40.0)
    w0 = 2.0 * math.pi * freq / sample_rate
    alpha = math.sin(w0) / (2.0 * q)
    cos_w0 = math.cos(w0)

    b = [1 + alpha * a, -2 * cos_w0, 1 - alpha * a]
    den = [1 + alpha / a, -2 * cos_w0, 1 - alpha / a]
    return np.array(b) / den[0], np.array(den) / den[0]


def apply_eq(samples: np.ndarray, sample_rate: int, eq: EqConfig) -> np.ndarray:
    """
    Low shelf at 320 Hz, peaking band at 1 kHz (Q=1), high shelf at 3.2 kHz.

    Bands at 0 dB are skipped. Bands above Nyquist are skipped as well.
    """
    from scipy import signal

    nyquist = sample_rate / 2.0
    out = samples.astype(np.float64)
    bands = (
        (eq.low_gain, LOW_SHELF_HZ, lambda: _shelf_coefficients("lowshelf", LOW_SHELF_HZ, eq.low_gain, sample_rate)),
        (eq.mid_gain, PEAKING_HZ, lambda: _peaking_coefficients(PEAKING_HZ, PEAKING_Q, eq.mid_gain, sample_rate)),
        (eq.high_gain, HIGH_SHELF_HZ, lambda: _shelf_coefficients("highshelf", HIGH_SHELF_HZ, eq.high_gain, sample_rate)),
    )
    for gain_db, freq, design in bands:
        if gain_db == 0.0 or freq >= nyquist:
            continue
        b, a = design()
        out = signal.lfilter(b, a, out, axis=-1)
    return out.astype(np.float32)


def _static_curve(level_db: np.ndarray, cfg: CompressionConfig) -> np.ndarray:
    """Compressor transfer curve (output level in dB) with a quadratic soft knee."""
    t, k, r = cfg.threshold, cfg.knee, cfg.ratio
    out = level_db.copy()

    above = level_db > t + k / 2.0
    out[above] = t + (level_db[above] - t) / r

    if k > 0:
        in_knee = (level_db >= t - k / 2.0) & ~above
        x = level_db[in_knee] - t + k / 2.0
        out[in_knee] = level_db[in_knee] + (1.0 / r - 1.0) * x * x / (2.0 * k)
    return out


def apply_compression(samples: np.ndarray, sample_rate: int, cfg: CompressionConfig) -> np.ndarray:
    """
    Feed-forward compressor linked across channels.

    The gain computer runs per block of COMPRESSOR_BLOCK samples on the block
    peak; gain reduction is smoothed with one-pole attack and release
    filters and interpolated across samples.
    """
    length = samples.shape[-1]
    if length == 0:
        return samples

    num_blocks = int(math.ceil(length / COMPRESSOR_BLOCK))
    padded = np.zeros((samples.shape[0], num_blocks * COMPRESSOR_BLOCK), dtype=np.float64)
    padded[:, :length] = samples
    block_peak = np.abs(padded).max(axis=0).reshape(num_blocks, COMPRESSOR_BLOCK).max(axis=1)

    level_db = 20.0 * np.log10(np.maximum(block_peak, 1e-6))
    target_reduction = _static_curve(level_db, cfg) - level_db  # <= 0

    block_seconds = COMPRESSOR_BLOCK / sample_rate
    attack_coef = math.exp(-block_seconds / cfg.attack) if cfg.attack > 0 else 0.0
    release_coef = math.exp(-block_seconds / cfg.release) if cfg.release > 0 else 0.0

    smoothed = np.empty(num_blocks)
    current = 0.0
    for i, wanted in enumerate(target_reduction):
        # more reduction is the attack phase
        coef = attack_coef if wanted < current else release_coef
        current = coef * current + (1.0 - coef) * wanted
        smoothed[i] = current

    centers = (np.arange(num_blocks) + 0.5) * COMPRESSOR_BLOCK
    gain_db = np.interp(np.arange(length), centers, smoothed)
    gain = 10.0 ** (gain_db / 20.0)
    return (samples * gain).astype(np.float32)


def apply_effects(pcm: PcmBuffer, config: EffectsConfig, for_vad: bool = False) -> Tuple[PcmBuffer, List[str]]:
    """
    Run the enabled effects in EQ, compression, gain order.

    Audio headed for speech detection is left alone unless apply_to_vad is
    set.

    Returns:
        (processed buffer, names of the effects applied or ["none"])
    """
    full_chain = not for_vad or config.apply_to_vad
    if not (full_chain and config.any_enabled):
        return pcm, ["none"]

    samples = pcm.samples
    applied = []

    if config.eq.enabled:
        samples = apply_eq(samples, pcm.sample_rate, config.eq)
        applied.append("eq")

    if config.compression.enabled:
        samples = apply_compression(samples, pcm.sample_rate, config.compression)
        applied.append("compression")

    if config.gain.enabled:
        samples = samples * np.float32(config.gain.gain)
        applied.append("gain")

    if not applied:
        return pcm, ["none"]

    return PcmBuffer(np.clip(samples, -1.0, 1.0).astype(np.float32), pcm.sample_rate), applied


def process_blob(data: bytes, config: EffectsConfig, for_vad: bool = False) -> EffectsResult:
    """
    Apply the effects chain to an encoded clip.

    Raises:
        DecodeError: if effects are enabled and the blob cannot be decoded
    """
    started = time.perf_counter()
    if not ((not for_vad or config.apply_to_vad) and config.any_enabled):
        logger.debug("No effects enabled, returning original audio")
        return EffectsResult(blob=data, effects_applied=["none"])

    pcm = decode(data)
    try:
        processed, applied = apply_effects(pcm, config, for_vad=for_vad)
        blob = data if processed is pcm else encode(processed)
    except Exception as e:
        logger.error(f"Audio effects processing failed, returning original audio: {e}", exc_info=True)
        return EffectsResult(
            blob=data,
            effects_applied=["error_fallback"],
            processing_time_ms=(time.perf_counter() - started) * 1000.0,
        )

    elapsed_ms = (time.perf_counter() - started) * 1000.0
    logger.info(f"Audio processing complete: {', '.join(applied)} ({elapsed_ms:.1f}ms)")
    return EffectsResult(blob=blob, effects_applied=applied, processing_time_ms=elapsed_ms)
