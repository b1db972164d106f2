# src/rendering/renderer_factory.py - v1
"""Factory: instantiate the rendering backend from configuration."""

from __future__ import annotations

import importlib
import logging

from bulkdoc.config.settings import Settings
from bulkdoc.rendering.base_renderer import BaseRenderer

logger = logging.getLogger(__name__)

# Registry of backend name -> renderer class path (lazy import).
_BACKEND_REGISTRY: dict[str, str] = {
    "local": "bulkdoc.rendering.local_renderer.LocalRenderer",
    "remote": "bulkdoc.rendering.remote_renderer.RemoteRenderer",
}


class UnsupportedBackendError(ValueError):
    """Raised when a renderer backend is not registered."""


def create_renderer(settings: Settings, backend: str | None = None, **kwargs: object) -> BaseRenderer:
    """Create the renderer selected by RENDERER_BACKEND (or ``backend``).

    Raises:
        UnsupportedBackendError: If the backend is not registered.
    """
    name = backend or settings.renderer_backend
    if name not in _BACKEND_REGISTRY:
        raise UnsupportedBackendError(
            f"Unsupported renderer backend: {name!r}. "
            f"Available: {', '.join(sorted(_BACKEND_REGISTRY))}"
        )

    init_kwargs = dict(kwargs)
    if name == "remote":
        init_kwargs.setdefault("api_url", settings.render_api_url)
        init_kwargs.setdefault("api_key", settings.render_api_key)
        init_kwargs.setdefault("timeout", settings.render_timeout_s)

    logger.debug("Creating renderer: backend=%s", name)
    return _import_class(_BACKEND_REGISTRY[name])(**init_kwargs)


def register_backend(name: str, class_path: str) -> None:
    """Register a custom renderer backend.

    Args:
        name: Backend identifier.
        class_path: Fully qualified class path implementing BaseRenderer.
    """
    _BACKEND_REGISTRY[name] = class_path
    logger.info("Registered renderer backend: %s -> %s", name, class_path)


def _import_class(class_path: str) -> type:
    module_path, class_name = class_path.rsplit(".", 1)
    return getattr(importlib.import_module(module_path), class_name)
