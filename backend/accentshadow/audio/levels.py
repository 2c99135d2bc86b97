"""Level and loudness analysis (RMS, peak, block-based LUFS) and cross-clip gain matching."""
from collections import OrderedDict
import threading
from typing import Hashable, Optional, Tuple
import math

import numpy as np

from accentshadow.audio.codec import decode
from accentshadow.audio.models import AudioLevelInfo, NormalizationGains, PcmBuffer
from accentshadow.audio.options import BalanceMode, LevelOptions
from accentshadow.core.logging import logger

BLOCK_SECONDS = 0.4
BLOCK_OVERLAP = 0.75
# Average mode pins to the target when clips differ by more than this
MAX_AVERAGE_SPREAD_DB = 12.0
# A reference further than this from the target is pulled back to it
MAX_REFERENCE_OFFSET_DB = 6.0


def rms(pcm: PcmBuffer) -> float:
    """Root mean square over all channels and samples combined."""
    if pcm.samples.size == 0:
        return 0.0
    x = pcm.samples.astype(np.float64)
    return float(np.sqrt(np.mean(x * x)))


def peak(pcm: PcmBuffer) -> float:
    """Maximum absolute sample value over all channels."""
    if pcm.samples.size == 0:
        return 0.0
    return float(np.max(np.abs(pcm.samples)))


def lufs(pcm: PcmBuffer) -> float:
    """
    Block-based integrated loudness estimate.

    400 ms blocks with 75% overlap. Each block's mean square (all channels
    pooled) becomes -0.691 + 10*log10(ms); blocks are averaged in the power
    domain. No K-weighting or gating.

    Returns:
        Loudness in LUFS, or -inf when no block has any signal
    """
    block = int(math.floor(BLOCK_SECONDS * pcm.sample_rate))
    hop = block - int(math.floor(block * BLOCK_OVERLAP))
    if block <= 0 or hop <= 0:
        return float("-inf")

    # blocks start at 0, hop, 2*hop, ... while start + block < length
    num_blocks = 0 if pcm.length <= block else (pcm.length - block - 1) // hop + 1
    if num_blocks == 0:
        return float("-inf")

    squared = pcm.samples.astype(np.float64) ** 2
    cumulative = np.concatenate([[0.0], np.cumsum(squared.sum(axis=0))])
    starts = np.arange(num_blocks) * hop
    mean_square = (cumulative[starts + block] - cumulative[starts]) / (block * pcm.num_channels)

    valid = mean_square[mean_square > 0]
    if valid.size == 0:
        return float("-inf")

    block_loudness = -0.691 + 10.0 * np.log10(valid)
    mean_power = float(np.mean(10.0 ** (block_loudness / 10.0)))
    return -0.691 + 10.0 * math.log10(mean_power) if mean_power > 0 else float("-inf")


def analyze_level(pcm: PcmBuffer) -> AudioLevelInfo:
    """Snapshot of a clip's level measurements."""
    return AudioLevelInfo(
        rms=rms(pcm),
        peak=peak(pcm),
        duration=pcm.duration,
        sample_rate=pcm.sample_rate,
        lufs=lufs(pcm),
    )


class LevelAnalyzer:
    """
    Level analysis with a bounded LRU cache.

    The cache key is (byte size, content type, caller timestamp). It is a
    best-effort key, not a content hash: two different blobs with the same
    size, type and timestamp share an entry. Calls without a timestamp are
    never cached, since size and type alone collide for equal-length clips.
    """

    def __init__(self, max_entries: int = 64):
        self.max_entries = max(1, max_entries)
        self._cache: "OrderedDict[Hashable, AudioLevelInfo]" = OrderedDict()
        self._hits = 0
        self._misses = 0
        self._lock = threading.Lock()

    @staticmethod
    def cache_key(data: bytes, content_type: Optional[str], timestamp: Optional[float]) -> Tuple:
        return (len(data), content_type or "", timestamp)

    def analyze(
        self,
        data: bytes,
        content_type: Optional[str] = None,
        timestamp: Optional[float] = None,
    ) -> AudioLevelInfo:
        """
        Analyze a blob, reusing a cached result for the same key.

        Args:
            data: Encoded clip
            content_type: MIME type reported by the caller
            timestamp: Caller's recording time; None skips the cache

        Raises:
            DecodeError: if the blob cannot be decoded
        """
        if timestamp is None:
            return self._measure(data)

        key = self.cache_key(data, content_type, timestamp)
        with self._lock:
            cached = self._cache.get(key)
            if cached is not None:
                self._cache.move_to_end(key)
                self._hits += 1
                logger.debug(f"Using cached level analysis for {key}")
                return cached
            self._misses += 1

        info = self._measure(data)
        with self._lock:
            self._cache[key] = info
            self._cache.move_to_end(key)
            while len(self._cache) > self.max_entries:
                self._cache.popitem(last=False)
        return info

    @staticmethod
    def _measure(data: bytes) -> AudioLevelInfo:
        info = analyze_level(decode(data))
        logger.info(
            f"Audio levels: RMS={info.rms:.4f}, peak={info.peak:.4f}, LUFS={info.lufs:.1f}, "
            f"duration={info.duration:.2f}s"
        )
        return info

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()
            self._hits = 0
            self._misses = 0
        logger.info("Audio level analysis cache cleared")

    def stats(self) -> dict:
        return {
            "size": len(self._cache),
            "maxEntries": self.max_entries,
            "hits": self._hits,
            "misses": self._misses,
        }


def _clip_gain(reference: float, clip_lufs: float, options: LevelOptions) -> float:
    if math.isnan(clip_lufs):
        return 1.0
    if clip_lufs == float("-inf"):
        # silence: any finite reference wants unbounded amplification
        return options.max_gain

    gain = 10.0 ** ((reference - clip_lufs) / 20.0)
    if gain > 1.0:
        gain = min(gain, options.max_gain)
    return max(gain, options.min_gain)


def normalization_gains(
    target: AudioLevelInfo,
    user: AudioLevelInfo,
    options: Optional[LevelOptions] = None,
) -> NormalizationGains:
    """
    Linear gains that bring both clips to a common reference loudness.

    Args:
        target: Level info of the reference clip
        user: Level info of the learner's clip
        options: Target loudness, gain bounds and balance mode

    Returns:
        NormalizationGains with both gains in [min_gain, max_gain]
    """
    options = options or LevelOptions()

    if options.balance_mode == BalanceMode.TARGET:
        reference = target.lufs
    elif options.balance_mode == BalanceMode.USER:
        reference = user.lufs
    else:
        spread = abs(target.lufs - user.lufs)
        if not spread <= MAX_AVERAGE_SPREAD_DB:
            logger.info(f"Large level difference ({spread:.1f}dB), using target LUFS reference")
            reference = options.target_lufs
        else:
            reference = (target.lufs + user.lufs) / 2.0

    if not (options.target_lufs - MAX_REFERENCE_OFFSET_DB <= reference <= options.target_lufs + MAX_REFERENCE_OFFSET_DB):
        logger.debug(f"Reference {reference:.1f} LUFS out of range, using {options.target_lufs:.1f} LUFS")
        reference = options.target_lufs

    gains = NormalizationGains(
        target_gain=_clip_gain(reference, target.lufs, options),
        user_gain=_clip_gain(reference, user.lufs, options),
        reference_lufs=reference,
    )
    logger.info(
        f"Normalization gains: target={gains.target_gain:.2f}x, user={gains.user_gain:.2f}x "
        f"(reference {reference:.1f} LUFS)"
    )
    return gains
