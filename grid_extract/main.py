"""Command-line entry point: extract every box of a grid from one image.

    python -m grid_extract.main sheet.jpg --rows 10 --cols 3 --tl 0.04 0.2 --size 0.95 0.67 -o boxes/
"""

from __future__ import annotations

import argparse
import os
import sys
from concurrent.futures import Future
from pathlib import Path

from PySide6.QtCore import QCoreApplication, QTimer

from grid_extract.geometry import GridTemplate, Paddings, Rectangle
from grid_extract.logger import get_logger, setup_logger
from grid_extract.settings_manager import SettingsManager

from .extract_engine.metrics import metrics
from .extract_engine.protocol import ExtractConfig
from .extract_engine.worker import ExtractWorkerHost

_logger = get_logger("main")


def _parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="grid_extract", description="Extract grid boxes from an image")
    parser.add_argument("image", help="Image file path or URL")
    parser.add_argument("--rows", type=int, required=True, help="Number of grid rows")
    parser.add_argument("--cols", type=int, required=True, help="Number of grid columns")
    parser.add_argument("--tl", type=float, nargs=2, default=(0.0, 0.0), metavar=("X", "Y"))
    parser.add_argument("--size", type=float, nargs=2, default=(1.0, 1.0), metavar=("W", "H"))
    parser.add_argument("--pads", type=float, nargs=4, metavar=("L", "R", "T", "B"), help="Relative box paddings")
    parser.add_argument("-o", "--out", default=".", help="Output directory")
    parser.add_argument("--settings", help="Settings JSON path")
    parser.add_argument("--log-level", help="Set log level")
    parser.add_argument("--log-cats", help="Set log categories")
    return parser.parse_args(argv)


def run(argv: list[str] | None = None) -> int:
    """Extract all boxes and write them to the output directory. Returns an exit code."""
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    if args.log_level:
        os.environ["GRID_EXTRACT_LOG_LEVEL"] = args.log_level
    if args.log_cats:
        os.environ["GRID_EXTRACT_LOG_CATS"] = args.log_cats
    if args.log_level or args.log_cats:
        setup_logger()

    settings = SettingsManager(args.settings or str(Path.home() / ".grid_extract" / "settings.json"))
    template = GridTemplate.uniform(args.rows, args.cols)
    pads = Paddings(*args.pads) if args.pads else None
    config = ExtractConfig(model=template, coords=Rectangle(tuple(args.tl), tuple(args.size)), pads=pads)

    out_dir = Path(args.out)
    out_dir.mkdir(parents=True, exist_ok=True)
    img: str = args.image
    if os.path.exists(img):
        img = str(Path(img).resolve())

    app = QCoreApplication.instance() or QCoreApplication([sys.argv[0]])
    host = ExtractWorkerHost.from_settings(settings)
    client = host.client
    status = {"code": 0, "left": template.box_count}

    def _box_done(idx: int, fut: Future) -> None:
        try:
            data = fut.result()
        except Exception as e:
            _logger.error("box %s failed: %s", idx, e)
            status["code"] = 1
            data = None
        if data:
            path = out_dir / f"box_{idx:04d}{settings.encode_format}"
            path.write_bytes(data)
            _logger.debug("wrote %s (%s bytes)", path, len(data))
        elif data is None:
            _logger.warning("box %s: no region extracted", idx)
        status["left"] -= 1
        if status["left"] == 0:
            QTimer.singleShot(0, app.quit)

    def _registered(fut: Future) -> None:
        if fut.cancelled() or fut.exception() is not None or not fut.result():
            _logger.error("could not load image: %s", img)
            status["code"] = 2
            QTimer.singleShot(0, app.quit)
            return
        for idx in range(template.box_count):
            client.extract(img, idx, config).add_done_callback(lambda f, i=idx: _box_done(i, f))

    client.post_img(img).add_done_callback(_registered)
    app.exec()
    host.shutdown()
    _logger.info("extracted %s boxes into %s", template.box_count - status["left"], out_dir)
    timing = metrics.timing("store.extract_duration")
    if timing.calls:
        _logger.info("box extraction: %s calls, mean %.1f ms, longest %.1f ms",
                     timing.calls, timing.mean * 1000, timing.longest * 1000)
    return status["code"]


if __name__ == "__main__":
    sys.exit(run())
