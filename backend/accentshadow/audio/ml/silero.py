"""Silero VAD (v5 ONNX export) speech scorer using ONNX Runtime."""
import os
from typing import Optional

import numpy as np

from accentshadow.audio.options import DETECTOR_SAMPLE_RATE
from accentshadow.core.errors import VADUnavailable
from accentshadow.core.logging import logger

SILERO_FRAME_SAMPLES = 512  # the v5 model only accepts 512-sample windows at 16 kHz
SILERO_CONTEXT_SAMPLES = 64
SILERO_STATE_SHAPE = (2, 1, 128)


class SileroScorer:
    """One detection pass. Carries the model's recurrent state and audio context."""

    def __init__(self, session):
        self._session = session
        self._state = np.zeros(SILERO_STATE_SHAPE, dtype=np.float32)
        self._context = np.zeros(SILERO_CONTEXT_SAMPLES, dtype=np.float32)
        self._sr = np.array(DETECTOR_SAMPLE_RATE, dtype=np.int64)

    def score(self, frame: np.ndarray) -> float:
        window = np.concatenate([self._context, frame.astype(np.float32)]).reshape(1, -1)
        output, self._state = self._session.run(
            None,
            {"input": window, "state": self._state, "sr": self._sr},
        )
        self._context = window[0, -SILERO_CONTEXT_SAMPLES:]
        return float(np.asarray(output).reshape(-1)[0])


class SileroModel:
    """Loaded Silero session. ONNX Runtime sessions are safe to run concurrently."""

    name = "silero"

    def __init__(self, session):
        self.session = session

    def create_scorer(self, frame_samples: int) -> SileroScorer:
        if frame_samples != SILERO_FRAME_SAMPLES:
            raise ValueError(
                f"Silero VAD needs {SILERO_FRAME_SAMPLES}-sample frames at 16 kHz, got {frame_samples}"
            )
        return SileroScorer(self.session)


def load_silero_model(model_path: Optional[str]) -> SileroModel:
    """
    Load the Silero VAD ONNX model.

    Args:
        model_path: Path to silero_vad.onnx

    Returns:
        SileroModel wrapping an InferenceSession

    Raises:
        VADUnavailable: if the model file is missing or ONNX Runtime rejects it
    """
    if not model_path or not os.path.exists(model_path):
        raise VADUnavailable(f"Silero VAD model not found: {model_path}")

    import onnxruntime as ort

    sess_options = ort.SessionOptions()
    sess_options.graph_optimization_level = ort.GraphOptimizationLevel.ORT_ENABLE_BASIC
    sess_options.inter_op_num_threads = 1
    sess_options.intra_op_num_threads = 1

    try:
        session = ort.InferenceSession(
            model_path,
            sess_options=sess_options,
            providers=["CPUExecutionProvider"],
        )
    except Exception as e:
        raise VADUnavailable(f"Failed to load Silero VAD model {model_path}: {e}") from e

    logger.info("Silero VAD model loaded successfully")
    logger.info(f"  Model path: {model_path}")
    logger.info(f"  Input names: {[inp.name for inp in session.get_inputs()]}")
    return SileroModel(session)
