from __future__ import annotations

import json
import os
from typing import Any

from .geometry import DEFAULT_PADS, Paddings
from .logger import get_logger

_logger = get_logger("settings")

_ENCODE_FORMATS = (".png", ".jpg", ".jpeg", ".webp", ".tif", ".tiff")


class SettingsManager:
    def __init__(self, settings_path: str):
        self.settings_path = settings_path
        self._settings: dict[str, Any] = {}
        self.load()

    DEFAULTS: dict[str, Any] = {
        "encode_format": ".png",
        "default_pads": DEFAULT_PADS.to_wire(),
        "fetch_timeout": 10.0,
    }

    def load(self) -> None:
        try:
            if os.path.exists(self.settings_path):
                with open(self.settings_path, encoding="utf-8") as f:
                    data = json.load(f)
                    if isinstance(data, dict):
                        self._settings = data
                        _logger.debug("settings loaded: %s", self.settings_path)
                        return
        except (OSError, ValueError) as e:
            _logger.warning("settings load failed: %s", e)
        self._settings = {}

    def save(self) -> None:
        try:
            parent = os.path.dirname(self.settings_path)
            if parent:
                os.makedirs(parent, exist_ok=True)
            with open(self.settings_path, "w", encoding="utf-8") as f:
                json.dump(self._settings, f, ensure_ascii=False, indent=2)
            _logger.debug("settings saved: %s", self.settings_path)
        except OSError as e:
            _logger.error("settings save failed: %s", e)

    def get(self, key: str, default: Any = None) -> Any:
        if key in self._settings:
            return self._settings[key]
        if default is not None:
            return default
        return self.DEFAULTS.get(key)

    def has(self, key: str) -> bool:
        return key in self._settings

    def set(self, key: str, value: Any) -> None:
        self._settings[key] = value
        self.save()

    @property
    def data(self) -> dict[str, Any]:
        return self._settings

    @property
    def encode_format(self) -> str:
        fmt = str(self.get("encode_format") or "").strip().lower()
        if not fmt.startswith("."):
            fmt = "." + fmt
        if fmt not in _ENCODE_FORMATS:
            _logger.warning("unsupported encode_format %r; using .png", fmt)
            return ".png"
        return fmt

    @property
    def default_pads(self) -> Paddings:
        raw = self.get("default_pads")
        try:
            return Paddings.from_wire(raw)
        except (TypeError, ValueError) as e:
            _logger.warning("failed to parse default_pads %r: %s", raw, e)
            return DEFAULT_PADS

    @property
    def fetch_timeout(self) -> float:
        try:
            value = float(self.get("fetch_timeout"))
        except (TypeError, ValueError):
            return float(self.DEFAULTS["fetch_timeout"])
        return value if value > 0 else float(self.DEFAULTS["fetch_timeout"])
