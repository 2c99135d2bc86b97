"""Error taxonomy for the audio processing core.

Only DecodeError is fatal for a clip. The other errors describe degradations
that the pipeline turns into "pass the audio through unmodified" results.
"""


class AudioProcessingError(Exception):
    """Base class for audio processing errors."""


class DecodeError(AudioProcessingError):
    """Audio bytes are empty, malformed, or in an unsupported container."""


class VADUnavailable(AudioProcessingError):
    """The speech detector failed to initialize or timed out."""


class NoSpeechDetected(AudioProcessingError):
    """The detector ran but found no speech segments."""


class DegenerateTrimResult(AudioProcessingError):
    """A trim would leave less audio than the configured minimum."""


class AlignmentFailure(AudioProcessingError):
    """Two-clip alignment could not be completed."""
