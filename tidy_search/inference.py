"""ONNX image encoder.

Owns the single ONNX Runtime session used for indexing. The session is
created once by load(), held for the life of the process and released
exactly once by close(). A failed load leaves the engine not-ready.

    engine = InferenceEngine()
    engine.load(VISUAL_MODEL_FILE.read_bytes())
    vec = engine.embed(preprocess(data))   # (D,) float32
"""

import logging
from pathlib import Path

import numpy as np

from config import (
    BATCH_SIZE,
    CHANNELS,
    EMBEDDING_DIM,
    IMAGE_SIZE,
    ORT_CUSTOM_OPS_LIBRARY,
)
from vectors import zero_vector

logger = logging.getLogger(__name__)


class ModelLoadError(Exception):
    """The model blob could not be turned into an inference session."""


class InferenceError(Exception):
    """A single embed() call failed (bad input, runtime error, bad output)."""


class InferenceEngine:
    """Runs image tensors through the visual ONNX model."""

    def __init__(
        self,
        dim: int = EMBEDDING_DIM,
        input_shape: tuple[int, int, int, int] = (BATCH_SIZE, CHANNELS, IMAGE_SIZE, IMAGE_SIZE),
        custom_ops_library: str | None = ORT_CUSTOM_OPS_LIBRARY,
    ):
        self.dim = dim
        self.input_shape = tuple(input_shape)
        self._custom_ops_library = custom_ops_library
        self._session = None
        self._input_name: str | None = None

    @property
    def loaded(self) -> bool:
        return self._session is not None

    def load(self, model: bytes | Path) -> None:
        """Create the session from serialized model bytes or a model file path."""
        import onnxruntime as ort

        self.close()
        if isinstance(model, Path):
            model = str(model)
        try:
            options = ort.SessionOptions()
            if self._custom_ops_library:
                options.register_custom_ops_library(self._custom_ops_library)
            session = ort.InferenceSession(
                model,
                sess_options=options,
                providers=["CPUExecutionProvider"],
            )
            inputs = session.get_inputs()
            if not inputs:
                raise ModelLoadError("Model declares no inputs")
        except ModelLoadError:
            raise
        except Exception as exc:
            raise ModelLoadError(f"Could not load image model: {exc}") from exc

        self._session = session
        self._input_name = inputs[0].name
        logger.info("Loaded image model (input %r, dim %d)", self._input_name, self.dim)

    def close(self) -> None:
        """Release the session. Safe to call more than once."""
        if self._session is None:
            return
        self._session = None
        self._input_name = None
        logger.info("Released image model session")

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def embed(self, tensor: np.ndarray) -> np.ndarray:
        """Embed one preprocessed image. Returns (D,) float32.

        Raises InferenceError when the engine is not loaded, the tensor does
        not match the declared input shape, the runtime fails, or the output
        is not exactly D floats.
        """
        if self._session is None:
            raise InferenceError("Image model is not loaded")

        tensor = np.asarray(tensor)
        if tuple(tensor.shape) != self.input_shape:
            raise InferenceError(
                f"Input shape {tuple(tensor.shape)} does not match {self.input_shape}"
            )

        try:
            outputs = self._session.run(
                None, {self._input_name: tensor.astype(np.float32, copy=False)}
            )
        except Exception as exc:
            raise InferenceError(f"Inference failed: {exc}") from exc

        if not outputs:
            raise InferenceError("Model produced no outputs")
        return self._extract(outputs[0])

    def embed_safe(self, tensor: np.ndarray) -> tuple[np.ndarray, InferenceError | None]:
        """Like embed(), but returns (zero vector, error) instead of raising."""
        try:
            return self.embed(tensor), None
        except InferenceError as exc:
            logger.debug("embed failed: %s", exc)
            return zero_vector(self.dim), exc

    def _extract(self, output) -> np.ndarray:
        try:
            arr = np.asarray(output, dtype=np.float32)
        except (TypeError, ValueError) as exc:
            raise InferenceError(f"Output is not a float array: {exc}") from exc

        if arr.shape == (1, self.dim):
            arr = arr[0]
        if arr.shape != (self.dim,):
            raise InferenceError(
                f"Output shape {arr.shape} does not match embedding dimension {self.dim}"
            )
        return arr.copy()
