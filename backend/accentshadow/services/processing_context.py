"""Process-wide processing context: the detector, the level cache and default options."""
from typing import Optional

from accentshadow.audio.levels import LevelAnalyzer
from accentshadow.audio.options import AlignmentOptions, LevelOptions, TrimOptions, VadConfig
from accentshadow.audio.vad_adapter import VadAdapter, create_vad_adapter
from accentshadow.core.logging import logger


class ProcessingContext:
    """
    Everything the request handlers share.

    Built once at startup from settings and kept on the application state.
    The core audio functions never see this object; handlers unpack it and
    pass the pieces explicitly.
    """

    def __init__(self, settings, adapter: Optional[VadAdapter] = None):
        """
        Initialize the context.

        Args:
            settings: Application settings
            adapter: Speech detector; built from settings.vad_backend when omitted
        """
        self.settings = settings
        self.vad_config = VadConfig.from_settings(settings)
        self.alignment_vad_config = VadConfig.from_settings(settings, merge_gap=settings.alignment_merge_gap_s)
        self.trim_options = TrimOptions.from_settings(settings)
        self.alignment_options = AlignmentOptions.from_settings(settings)
        self.level_options = LevelOptions.from_settings(settings)
        self.adapter = adapter or create_vad_adapter(settings, self.vad_config)
        self.level_analyzer = LevelAnalyzer(max_entries=settings.level_cache_size)

    async def warm_up(self) -> bool:
        """Load the speech detector ahead of the first request."""
        ready = await self.adapter.initialize()
        if ready:
            logger.info(f"VAD ready (backend: {self.adapter.backend})")
        else:
            logger.warning(f"VAD unavailable, audio will not be trimmed: {self.adapter.unavailable_reason}")
        return ready

    def vad_status(self) -> dict:
        return {
            "state": self.adapter.state.value,
            "ready": self.adapter.ready,
            "backend": self.adapter.backend or self.settings.vad_backend,
            "reason": self.adapter.unavailable_reason,
        }
