"""Extraction worker running in its own QThread.

The worker owns an `ExtractStore` and handles one wire message at a time in
arrival order. Requests reach it through a queued signal; responses go back
through a queued signal to the thread that owns the `ExtractWorkerHost`,
where the host's `ExtractClient` resolves them. Only plain Python payloads
(dict/bytes/str/numbers) cross the thread boundary.
"""

from __future__ import annotations

from PySide6.QtCore import QObject, Qt, QThread, Signal, Slot

from grid_extract.logger import get_logger

from .client import ExtractClient
from .store import ExtractStore

_logger = get_logger("worker")


class ExtractWorker(QObject):
    """Background worker executing extraction messages against a store."""

    responded = Signal(object)  # response dict

    def __init__(self, store: ExtractStore | None = None, parent: QObject | None = None) -> None:
        super().__init__(parent)
        self._store = store if store is not None else ExtractStore()

    @property
    def store(self) -> ExtractStore:
        return self._store

    @Slot(object)
    def handle(self, message: object) -> None:
        if not isinstance(message, dict):
            _logger.warning("ignoring non-dict message: %r", type(message).__name__)
            return
        response = self._store.handle_message(message)
        if response is not None:
            self.responded.emit(response)


class ExtractWorkerHost(QObject):
    """Starts an `ExtractWorker` thread and exposes a client wired to it.

    Create it on the thread that consumes results (usually the UI thread);
    responses are delivered there through that thread's event loop.
    """

    _request = Signal(object)  # message dict

    def __init__(self, store: ExtractStore | None = None, parent: QObject | None = None) -> None:
        super().__init__(parent)
        self._thread = QThread(self)
        self._worker = ExtractWorker(store)
        self._worker.moveToThread(self._thread)
        # Queued both ways so the store only ever runs on the worker thread.
        self._request.connect(self._worker.handle, Qt.ConnectionType.QueuedConnection)
        self._worker.responded.connect(self._on_response, Qt.ConnectionType.QueuedConnection)
        self._thread.start()
        self._client = ExtractClient(self.post_message)
        _logger.debug("ExtractWorkerHost started")

    @classmethod
    def from_settings(cls, settings, parent: QObject | None = None) -> ExtractWorkerHost:
        return cls(ExtractStore.from_settings(settings), parent)

    @property
    def client(self) -> ExtractClient:
        return self._client

    @property
    def worker(self) -> ExtractWorker:
        return self._worker

    def post_message(self, message: dict) -> None:
        if not self._thread.isRunning():
            raise RuntimeError("extract worker thread is not running")
        self._request.emit(message)

    @Slot(object)
    def _on_response(self, response: object) -> None:
        if isinstance(response, dict):
            self._client.on_message(response)

    def shutdown(self, timeout_ms: int = 5000) -> None:
        self._client.close()
        self._thread.quit()
        if not self._thread.wait(timeout_ms):
            _logger.warning("extract worker thread did not stop within %sms", timeout_ms)
        _logger.debug("ExtractWorkerHost stopped")


def prepare_worker(store: ExtractStore | None = None, parent: QObject | None = None) -> ExtractWorkerHost:
    """Start a worker thread; use `host.client` to extract and `host.shutdown()` when done."""
    return ExtractWorkerHost(store, parent)
