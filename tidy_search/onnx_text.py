"""ONNX text encoder: turns free-text search queries into embeddings.

Runs the text tower of the same CLIP model as the image encoder, so query
vectors live in the image embedding space. Only the search path uses it.
An optional sidecar `<model>.json` names the open_clip tokenizer to use.
"""

import json
import logging
from pathlib import Path

import numpy as np

from config import EMBEDDING_DIM, TEXT_TOKENIZER_MODEL
from vectors import normalize

logger = logging.getLogger(__name__)


class TextEncoderError(RuntimeError):
    """The text model could not be loaded or produced an unusable vector."""


class OnnxTextEncoder:
    """Runs text encoding via ONNX Runtime."""

    def __init__(self, onnx_path: Path, tokenizer_model: str, dim: int = EMBEDDING_DIM):
        self.onnx_path = onnx_path
        self.dim = dim
        self._tokenizer_model = tokenizer_model
        self._session = None
        self._input_name = "input_ids"
        self._tokenizer = None

    @property
    def loaded(self) -> bool:
        return self._session is not None

    def load(self) -> None:
        import onnxruntime as ort
        import open_clip

        logger.info("Loading ONNX text encoder: %s", self.onnx_path.stem)
        try:
            session = ort.InferenceSession(
                str(self.onnx_path),
                providers=["CPUExecutionProvider"],
            )
            inputs = session.get_inputs()
            tokenizer = open_clip.get_tokenizer(self._tokenizer_model)
        except Exception as exc:
            raise TextEncoderError(f"Could not load text model: {exc}") from exc

        if inputs:
            self._input_name = inputs[0].name
        self._tokenizer = tokenizer
        self._session = session
        logger.info("Loaded ONNX text encoder: %s", self.onnx_path.stem)

    def encode_text(self, text: str) -> np.ndarray:
        """Encode text query to normalized embedding vector. Returns (D,) float32."""
        if not self.loaded:
            self.load()
        try:
            tokens = self._tokenizer([text]).numpy().astype(np.int64)
            outputs = self._session.run(None, {self._input_name: tokens})
            vec = np.asarray(outputs[0], dtype=np.float32).reshape(-1)
        except Exception as exc:
            raise TextEncoderError(f"Text encoding failed: {exc}") from exc
        if vec.shape != (self.dim,):
            raise TextEncoderError(
                f"Text encoder returned {vec.shape[0]} dimensions, expected {self.dim}"
            )
        return normalize(vec)


def load_text_encoder(onnx_path: Path, dim: int = EMBEDDING_DIM) -> OnnxTextEncoder | None:
    """Build a text encoder if the exported model exists (not loaded yet)."""
    if not onnx_path.exists():
        logger.info("No text model at %s; text search disabled", onnx_path)
        return None

    tokenizer_model = TEXT_TOKENIZER_MODEL
    meta_path = onnx_path.with_suffix(".json")
    if meta_path.exists():
        try:
            meta = json.loads(meta_path.read_text())
            tokenizer_model = meta["tokenizer_model"]
        except (json.JSONDecodeError, KeyError, TypeError):
            logger.warning("Could not read text model metadata %s", meta_path)
            return None
    return OnnxTextEncoder(onnx_path, tokenizer_model, dim=dim)
