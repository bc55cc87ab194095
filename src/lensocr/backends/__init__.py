# lensocr/backends/__init__.py
from __future__ import annotations

import importlib
import logging
from typing import Any

from .base import BaseConversationClient, BaseExtractionClient

__all__ = ["BaseConversationClient", "BaseExtractionClient", "load_backend"]

logger = logging.getLogger("lensocr")


def _import_obj(dotted: str):
    mod_path, _, attr = dotted.rpartition(".")
    if not mod_path or not attr:
        raise ImportError(f"Invalid backend path, {dotted}")
    mod = importlib.import_module(mod_path)
    try:
        return getattr(mod, attr)
    except AttributeError as e:
        raise ImportError(f"Backend class not found, {dotted}") from e


def load_backend(backend_path: str, **backend_kwargs: Any):
    """
    Load a backend class from its dotted path and create an instance.
    """
    logger.debug("Loading backend, %s", backend_path)
    try:
        backend_cls = _import_obj(backend_path)
    except Exception:
        logger.exception("Cannot import backend, %s", backend_path)
        raise
    return backend_cls(**backend_kwargs)
