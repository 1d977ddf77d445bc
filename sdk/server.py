# sdk/server.py
"""
Stable import path for the inspector's HTTP surface:
    uvicorn sdk.server:app
AUDIOINSPECTOR_UI_MODULE swaps in another module exporting a FastAPI ``app``.
"""

from __future__ import annotations

import logging
import os
from importlib import import_module
from typing import Any, Optional

_logger = logging.getLogger(__name__)

DEFAULT_UI_MODULE = "apps.ui_api.main"


def load_app(module_path: Optional[str] = None) -> Any:
    module_path = module_path or os.environ.get("AUDIOINSPECTOR_UI_MODULE", DEFAULT_UI_MODULE)
    try:
        return getattr(import_module(module_path), "app")
    except (ImportError, AttributeError) as exc:
        raise RuntimeError(
            f"Failed to import FastAPI app from '{module_path}'. "
            "Make sure the module exists and exports `app` (FastAPI instance)."
        ) from exc


def serve(host: str = "127.0.0.1", port: int = 8765, log_level: str = "info") -> None:
    import uvicorn

    _logger.info("serving inspector UI API on %s:%d", host, port)
    uvicorn.run(load_app(), host=host, port=port, log_level=log_level)


app = load_app()
