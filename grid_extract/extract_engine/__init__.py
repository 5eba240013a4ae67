"""Extract Engine - offloads image decoding and box extraction to a worker.

This package provides both sides of the extraction protocol:
- Client multiplexer (client)
- Wire messages (protocol)
- Worker-side store and region extraction (store, extract, decoder)
- Qt worker thread host (worker)

Usage:
    from grid_extract.extract_engine.worker import prepare_worker

    host = prepare_worker()
    future = host.client.extract(image_bytes, 0, config)
    future.add_done_callback(on_box)
"""

from .client import ExtractClient, make_api
from .protocol import ExtractConfig, RemoteError
from .store import ExtractStore

__all__ = ["ExtractClient", "ExtractConfig", "ExtractStore", "RemoteError", "make_api"]
