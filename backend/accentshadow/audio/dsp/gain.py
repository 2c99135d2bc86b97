"""Static gain with a soft limiter."""
import numpy as np

from accentshadow.audio.models import PcmBuffer

LIMITER_THRESHOLD = 0.9
LIMITER_RATIO = 0.7


def soft_limit(samples: np.ndarray, threshold: float = LIMITER_THRESHOLD, ratio: float = LIMITER_RATIO) -> np.ndarray:
    """Compress everything above threshold by ratio, then hard clip to [-1, 1]."""
    magnitude = np.abs(samples)
    if magnitude.size and np.max(magnitude) > threshold:
        over = magnitude - threshold
        samples = np.where(
            magnitude > threshold,
            np.sign(samples) * (threshold + over * ratio),
            samples,
        )
    return np.clip(samples, -1.0, 1.0)


def apply_gain(pcm: PcmBuffer, gain: float, min_gain: float = 0.0, max_gain: float = 4.0) -> PcmBuffer:
    """
    Scale a buffer by a linear gain.

    Args:
        pcm: Input buffer (not modified)
        gain: Linear gain, clamped to [min_gain, max_gain]
        min_gain: Lower bound for gain
        max_gain: Upper bound for gain

    Returns:
        New buffer, soft-limited and clipped to [-1, 1]
    """
    gain = float(np.clip(gain, min_gain, max_gain))
    if gain == 1.0:
        return pcm

    scaled = pcm.samples.astype(np.float32) * np.float32(gain)
    return PcmBuffer(soft_limit(scaled).astype(np.float32), pcm.sample_rate)
