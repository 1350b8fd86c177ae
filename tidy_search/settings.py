import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass
class Settings:
    """User-facing settings read at the start of every indexing run.

    selected_folder: folder to index recursively; None means the whole
        system photo library.
    media_library: path to the system photo library; None means the default.
    """

    selected_folder: str | None = None
    media_library: str | None = None


class SettingsFile:
    def __init__(self, path: Path):
        self.path = path

    def load(self) -> Settings:
        if not self.path.exists():
            return Settings()
        try:
            data = json.loads(self.path.read_text())
            return Settings(
                selected_folder=data.get("selected_folder") or None,
                media_library=data.get("media_library") or None,
            )
        except (json.JSONDecodeError, ValueError, AttributeError):
            logger.warning("Corrupt %s, using defaults", self.path.name)
            return Settings()

    def save(self, settings: Settings) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(asdict(settings), indent=2))
        tmp.rename(self.path)

    def select_folder(self, path: str | None) -> str:
        settings = self.load()
        if path is None:
            settings.selected_folder = None
            self.save(settings)
            return "Cleared folder selection; indexing the system photo library"
        resolved = str(Path(path).expanduser().resolve())
        if not Path(resolved).is_dir():
            return f"Not a directory: {resolved}"
        settings.selected_folder = resolved
        self.save(settings)
        return f"Selected folder: {resolved}"
