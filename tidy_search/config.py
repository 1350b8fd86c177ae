import os
from pathlib import Path

CACHE_DIR = Path(
    os.environ.get("TIDY_CACHE_DIR", Path.home() / ".cache" / "tidy-search")
).resolve()

DATABASE_FILE = CACHE_DIR / "embeddings.db"
SETTINGS_FILE = CACHE_DIR / "settings.json"
MODELS_DIR = CACHE_DIR / "models"

# -- models --

VISUAL_MODEL_FILE = Path(
    os.environ.get("TIDY_VISUAL_MODEL", MODELS_DIR / "visual_quant.onnx")
)
TEXT_MODEL_FILE = Path(
    os.environ.get("TIDY_TEXT_MODEL", MODELS_DIR / "textual_quant.onnx")
)
TEXT_TOKENIZER_MODEL = "ViT-B-32"

# Optional shared library with custom ONNX Runtime ops (e.g. tokenizer ops
# baked into the exported graph).
ORT_CUSTOM_OPS_LIBRARY = os.environ.get("TIDY_ORT_CUSTOM_OPS") or None

EMBEDDING_DIM = 512
IMAGE_SIZE = 224
CHANNELS = 3
BATCH_SIZE = 1

# CLIP channel statistics (RGB)
NORM_MEAN = (0.48145466, 0.4578275, 0.40821073)
NORM_STD = (0.26862954, 0.26130258, 0.27577711)

# -- sources --

DEFAULT_MEDIA_LIBRARY = Path.home() / "Pictures" / "Photos Library.photoslibrary"

# -- service daemon --

SERVICE_PORT = int(os.environ.get("TIDY_SEARCH_PORT", "7830"))
SERVICE_HOST = "127.0.0.1"
SERVICE_PID_FILE = Path("/tmp/tidy-search/service.pid")
NICE_VALUE = 15

DEFAULT_PAGE_SIZE = 50
