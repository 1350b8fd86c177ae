import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable

import numpy as np

from context import AppContext
from inference import ModelLoadError
from preprocess import preprocess
from search import SearchResult, rank, rank_with_scores
from settings import Settings
from sources import EnumerationError, ImageSource, InvalidFolderError, SourceItem, select_source
from status import IndexStatus, RunState, StatusMessage
from store import EmbeddingRecord, InvalidEmbeddingError, NewEmbedding, StoreError
from vectors import is_zero

logger = logging.getLogger(__name__)

SourceFactory = Callable[[Settings], ImageSource]


def _default_source(settings: Settings) -> ImageSource:
    return select_source(settings.selected_folder, settings.media_library)


# ---------------------------------------------------------------------------
# Mirror
# ---------------------------------------------------------------------------


@dataclass(frozen=True, eq=False)
class Mirror:
    """Immutable in-memory copy of the store used for search.

    ids[i] and vectors[i] describe the same record. Never mutated in place:
    updates build a new Mirror and swap the reference.
    """

    ids: tuple[int, ...]
    vectors: np.ndarray  # (N, D) float32
    records: dict[int, EmbeddingRecord] = field(default_factory=dict)

    @classmethod
    def empty(cls, dim: int) -> "Mirror":
        return cls((), np.zeros((0, dim), dtype=np.float32), {})

    @classmethod
    def from_records(cls, records: list[EmbeddingRecord], dim: int) -> "Mirror":
        if not records:
            return cls.empty(dim)
        ids = tuple(r.internal_id for r in records)
        vectors = np.vstack([r.embedding for r in records]).astype(np.float32)
        vectors.setflags(write=False)
        return cls(ids, vectors, {r.internal_id: r for r in records})

    def without(self, internal_ids: Iterable[int]) -> "Mirror":
        drop = set(internal_ids)
        if not drop.intersection(self.records):
            return self
        keep = [i for i, rid in enumerate(self.ids) if rid not in drop]
        vectors = self.vectors[keep]
        vectors.setflags(write=False)
        return Mirror(
            tuple(self.ids[i] for i in keep),
            vectors,
            {rid: rec for rid, rec in self.records.items() if rid not in drop},
        )

    def __len__(self) -> int:
        return len(self.ids)


# ---------------------------------------------------------------------------
# IndexCoordinator
# ---------------------------------------------------------------------------


class IndexCoordinator:
    """Runs indexing passes and owns the searchable mirror of the store.

    At most one run is active at a time; it executes on a dedicated worker
    thread. Deletes and clears may be called from any thread.
    """

    def __init__(self, context: AppContext, source_factory: SourceFactory | None = None):
        self._ctx = context
        self._store = context.store
        self._engine = context.engine
        self._status = context.status
        self._source_factory = source_factory or _default_source
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="indexer")
        self._run_lock = threading.Lock()
        self._running = False
        # Pairs each store mutation with its mirror swap. Taken before the store lock.
        self._mirror_lock = threading.Lock()
        self._mirror = Mirror.empty(context.dim)

    @property
    def context(self) -> AppContext:
        return self._ctx

    # -- status --

    @property
    def status(self) -> IndexStatus:
        return self._status.latest

    @property
    def running(self) -> bool:
        return self._running

    def _publish(
        self,
        state: RunState,
        message: StatusMessage,
        processed: int = 0,
        total: int = 0,
    ) -> IndexStatus:
        status = IndexStatus(state, message, processed, total)
        self._status.publish(status)
        return status

    # -- mirror --

    def snapshot(self) -> Mirror:
        return self._mirror

    @property
    def ids(self) -> tuple[int, ...]:
        return self._mirror.ids

    @property
    def vectors(self) -> np.ndarray:
        return self._mirror.vectors

    def get_record(self, internal_id: int) -> EmbeddingRecord | None:
        return self._mirror.records.get(internal_id)

    def rebuild_mirror(self) -> Mirror:
        """Replace the mirror with a fresh full scan of the store."""
        with self._mirror_lock:
            return self._reload_mirror()

    def _reload_mirror(self) -> Mirror:
        # caller holds _mirror_lock
        try:
            records = self._store.scan_all()
            mirror = Mirror.from_records(records, self._ctx.dim)
        except StoreError:
            logger.error("Error loading embeddings from store", exc_info=True)
            mirror = Mirror.empty(self._ctx.dim)
        self._mirror = mirror
        logger.debug("Loaded %d embeddings into the mirror", len(mirror))
        return mirror

    # -- model --

    def load_model(self, model: bytes | Path) -> bool:
        """Load the image model, then the mirror. Returns False if the model failed."""
        self._publish(RunState.INITIALIZING, StatusMessage.INITIALIZING)
        try:
            self._engine.load(model)
        except (ModelLoadError, OSError):
            logger.error("Error loading image model", exc_info=True)
            self._publish(RunState.ERROR, StatusMessage.MODEL_LOAD_FAILED)
            return False

        self._publish(RunState.INITIALIZING, StatusMessage.LOADING_DB)
        mirror = self.rebuild_mirror()
        self._publish(
            RunState.IDLE,
            StatusMessage.READY if len(mirror) else StatusMessage.IDLE,
        )
        return True

    # -- indexing run --

    def start_indexing(self) -> Future | None:
        """Start a full indexing run in the background.

        Returns a Future resolving to the final IndexStatus, or None when a
        run is already active or the model is not loaded.
        """
        with self._run_lock:
            if self._running:
                logger.warning("Indexing already in progress")
                return None
            if not self._engine.loaded:
                logger.error("Image model not ready, cannot start indexing")
                self._publish(RunState.ERROR, StatusMessage.MODEL_NOT_READY)
                return None
            self._running = True
            self._publish(RunState.INITIALIZING, StatusMessage.STARTING)

        try:
            return self._executor.submit(self._run)
        except RuntimeError:
            logger.error("Indexing worker is shut down", exc_info=True)
            with self._run_lock:
                self._running = False
            self._publish(RunState.ERROR, StatusMessage.ERROR)
            raise

    def _run(self) -> IndexStatus:
        processed = 0
        total = 0
        try:
            settings = self._ctx.settings.load()
            source = self._source_factory(settings)

            self._publish(RunState.SCANNING, StatusMessage.FINDING_FILES)
            try:
                items = source.enumerate()
            except InvalidFolderError:
                logger.error("Selected folder is not a valid directory", exc_info=True)
                return self._publish(RunState.ERROR, StatusMessage.INVALID_FOLDER)
            except EnumerationError:
                logger.error("Error enumerating images", exc_info=True)
                return self._publish(RunState.ERROR, StatusMessage.ERROR)

            total = len(items)
            self._publish(RunState.PROCESSING, StatusMessage.PROCESSING, 0, total)

            inserted = 0
            for item in items:
                if self._process_item(item):
                    inserted += 1
                processed += 1
                self._publish(RunState.PROCESSING, StatusMessage.PROCESSING, processed, total)

            self._publish(RunState.FINALIZING, StatusMessage.FINALIZING, processed, total)
            self.rebuild_mirror()
            logger.info(
                "Indexing finished: %d/%d processed, %d stored", processed, total, inserted
            )
            return self._publish(RunState.COMPLETE, StatusMessage.COMPLETE, processed, total)
        except Exception:
            logger.error("Error during indexing run", exc_info=True)
            return self._publish(RunState.ERROR, StatusMessage.ERROR, processed, total)
        finally:
            with self._run_lock:
                self._running = False

    def _process_item(self, item: SourceItem) -> bool:
        """Fetch, preprocess, embed and store one image. False if it was skipped."""
        try:
            data = item.read_bytes()
            tensor = preprocess(data)
            vector, error = self._engine.embed_safe(tensor)
            if error is not None:
                raise error
            if is_zero(vector):
                raise InvalidEmbeddingError("Model returned an all-zero embedding")
            self._store.insert(NewEmbedding(item.source, item.modified_at, vector))
            return True
        except Exception:
            logger.warning("Failed to process or save embedding for %s", item.path, exc_info=True)
            return False

    # -- mutations --

    def clear_all_embeddings(self) -> bool:
        """Empty the mirror and the store. Returns False if the store failed."""
        logger.debug("Clearing all embeddings")
        with self._mirror_lock:
            self._mirror = Mirror.empty(self._ctx.dim)
            try:
                self._store.clear_all()
            except StoreError:
                logger.error("Error clearing embeddings", exc_info=True)
                return False
            self._reload_mirror()
        if not self._running:
            self._publish(RunState.IDLE, StatusMessage.IDLE)
        return True

    def delete_by_ids(self, internal_ids: Iterable[int]) -> int:
        """Delete records, then filter them out of the mirror. Returns rows deleted."""
        ids = {int(i) for i in internal_ids}
        if not ids:
            return 0
        with self._mirror_lock:
            deleted = self._store.delete_many(ids)
            self._mirror = self._mirror.without(ids)
        logger.debug("Deleted %d embeddings, %d remain in mirror", deleted, len(self._mirror))
        return deleted

    def mark_moved(self, internal_id: int, new_timestamp: int) -> int:
        """A moved file is dropped from the index; the next run picks it up again."""
        logger.debug("Treating move of %d (at %d) as removal", internal_id, new_timestamp)
        return self.delete_by_ids([internal_id])

    # -- search --

    def search_by_vector(self, query) -> list[int]:
        mirror = self._mirror
        return rank(query, mirror.ids, mirror.vectors)

    def search_results(self, query) -> list[SearchResult]:
        mirror = self._mirror
        return [
            SearchResult(internal_id=i, score=s)
            for i, s in rank_with_scores(query, mirror.ids, mirror.vectors)
        ]

    def find_similar(self, internal_id: int) -> list[SearchResult]:
        """Rank the index against the stored embedding of one indexed image."""
        record = self.get_record(internal_id)
        if record is None:
            return []
        return self.search_results(record.embedding)

    def search_text(self, query: str) -> list[SearchResult]:
        encoder = self._ctx.text_encoder
        if encoder is None:
            raise RuntimeError("No text model available")
        return self.search_results(encoder.encode_text(query))

    # -- lifecycle --

    def shutdown(self) -> None:
        """Wait for an active run, then release the model."""
        self._executor.shutdown(wait=True)
        self._engine.close()
