"""Application-scoped owner of the long-lived collaborators.

One AppContext per process. It is created lazily by the service and passed
to the IndexCoordinator; tests build their own with fakes swapped in.
"""

import logging
from pathlib import Path

from config import CACHE_DIR, DATABASE_FILE, EMBEDDING_DIM, SETTINGS_FILE, TEXT_MODEL_FILE
from inference import InferenceEngine
from onnx_text import OnnxTextEncoder, load_text_encoder
from settings import SettingsFile
from status import StatusChannel
from store import EmbeddingStore

logger = logging.getLogger(__name__)


class AppContext:
    def __init__(
        self,
        cache_dir: Path | None = None,
        dim: int = EMBEDDING_DIM,
        text_model: Path | None = None,
    ):
        self.cache_dir = (cache_dir or CACHE_DIR).resolve()
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.dim = dim

        self.settings = SettingsFile(self.cache_dir / SETTINGS_FILE.name)
        self.store = EmbeddingStore(self.cache_dir / DATABASE_FILE.name, dim=dim)
        self.engine = InferenceEngine(dim=dim)
        self.status = StatusChannel()
        self.text_encoder: OnnxTextEncoder | None = load_text_encoder(
            text_model or TEXT_MODEL_FILE, dim=dim
        )
        self._closed = False

    def close(self) -> None:
        """Release the model session and the database exactly once."""
        if self._closed:
            return
        self._closed = True
        self.engine.close()
        self.store.close()
        logger.info("Application context closed")
