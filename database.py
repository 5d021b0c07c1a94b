"""
Flat-file document store.

The whole database is a single JSON document holding three collections
(users, products, orders). It is rewritten wholesale on every write.

One writer task owns the authoritative in-memory copy and drains a FIFO
queue of write requests, so at most one physical write is in flight and
submissions are persisted in the order they were made. Reads never wait
on the writer: they deep-copy whatever document was last committed.

Every committed write bumps an in-process revision counter. A caller that
passes the revision its snapshot was taken at gets a ConflictError when
another write landed in between, instead of silently overwriting it.
"""
import asyncio
import copy
import json
import os
import stat
import tempfile
from typing import Callable, Optional, Tuple, TypeVar

import structlog

from config import DATABASE_PATH
from errors import ConflictError, PersistenceError

logger = structlog.get_logger(__name__)

COLLECTIONS = ("users", "products", "orders")

# Mode for a freshly created document; later writes keep whatever the file has.
DEFAULT_FILE_MODE = 0o644

T = TypeVar("T")


def empty_document() -> dict:
    return {name: [] for name in COLLECTIONS}


def normalize_document(document) -> dict:
    """Return a private copy of ``document`` with every collection present."""
    if not isinstance(document, dict):
        raise TypeError("document must be a mapping of collections")
    normalized = copy.deepcopy(document)
    for name in COLLECTIONS:
        collection = normalized.setdefault(name, [])
        if not isinstance(collection, list):
            raise TypeError(f"collection '{name}' must be a list")
    return normalized


class DocumentStore:
    def __init__(self, path: str):
        self.path = path
        self._document: Optional[dict] = None
        self._revision = 0
        self._open_lock = asyncio.Lock()
        self._queue: Optional[asyncio.Queue] = None
        self._writer: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def revision(self) -> int:
        return self._revision

    @property
    def is_open(self) -> bool:
        return self._document is not None

    def list_collection_names(self):
        return list(COLLECTIONS)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def open(self) -> None:
        """Load the document, creating an empty one on first access."""
        if self._document is None:
            async with self._open_lock:
                if self._document is None:
                    self._document = await asyncio.to_thread(self._load)
                    logger.info("store_opened", path=self.path, revision=self._revision)
        self._ensure_writer()

    async def close(self) -> None:
        """Let queued writes finish, then stop the writer task."""
        writer = self._writer
        if writer is None or writer.done():
            self._writer = None
            return
        if self._loop is asyncio.get_running_loop():
            await self._queue.join()
            writer.cancel()
            try:
                await writer
            except asyncio.CancelledError:
                pass
        self._writer = None

    def _ensure_writer(self) -> None:
        loop = asyncio.get_running_loop()
        if self._writer is None or self._writer.done() or self._loop is not loop:
            self._loop = loop
            self._queue = asyncio.Queue()
            self._writer = loop.create_task(self._run_writer(), name="document-store-writer")

    def _load(self) -> dict:
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        if not os.path.exists(self.path):
            document = empty_document()
            self._write_file(document)
            return document
        with open(self.path, encoding="utf-8") as fh:
            return normalize_document(json.load(fh))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    async def snapshot(self) -> dict:
        """Deep, independent copy of the last committed document."""
        _, document = await self.versioned_snapshot()
        return document

    async def versioned_snapshot(self) -> Tuple[int, dict]:
        await self.open()
        return self._revision, copy.deepcopy(self._document)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    async def submit(self, next_document: dict, expected_revision: Optional[int] = None) -> int:
        """Queue ``next_document`` as the new durable state.

        Resolves with the committed revision once this write (and every
        write queued before it) has been handled. With ``expected_revision``
        the write is rejected if the store has moved past that revision.
        """
        await self.open()
        document = normalize_document(next_document)
        future = self._loop.create_future()
        await self._queue.put((document, expected_revision, future))
        return await future

    async def update(self, mutate: Callable[[dict], T]) -> T:
        """Snapshot, apply ``mutate`` to the copy, and submit it guarded."""
        revision, document = await self.versioned_snapshot()
        result = mutate(document)
        await self.submit(document, expected_revision=revision)
        return result

    async def _run_writer(self) -> None:
        while True:
            document, expected_revision, future = await self._queue.get()
            try:
                revision = await self._commit(document, expected_revision)
            except Exception as exc:
                if not future.done():
                    future.set_exception(exc)
            else:
                if not future.done():
                    future.set_result(revision)
            finally:
                self._queue.task_done()

    async def _commit(self, document: dict, expected_revision: Optional[int]) -> int:
        if expected_revision is not None and expected_revision != self._revision:
            logger.warning(
                "write_conflict",
                expected_revision=expected_revision,
                revision=self._revision,
            )
            raise ConflictError("The store changed while this request was in progress, please retry")
        try:
            await asyncio.to_thread(self._write_file, document)
        except (OSError, TypeError, ValueError) as exc:
            logger.error("write_failed", path=self.path, error=str(exc))
            raise PersistenceError(f"Could not persist document: {exc}") from exc
        self._document = document
        self._revision += 1
        logger.debug("write_committed", revision=self._revision)
        return self._revision

    def _write_file(self, document: dict) -> None:
        # A fresh file is renamed over the old one, so a failed write never
        # leaves a half-written document behind.
        directory = os.path.dirname(os.path.abspath(self.path))
        try:
            mode = stat.S_IMODE(os.stat(self.path).st_mode)
        except FileNotFoundError:
            mode = DEFAULT_FILE_MODE
        fd, tmp_path = tempfile.mkstemp(prefix=".db-", suffix=".tmp", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                # mkstemp creates the file 0600 and os.replace carries that over.
                os.chmod(tmp_path, mode)
                json.dump(document, fh, indent=2)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise


db = DocumentStore(DATABASE_PATH)
