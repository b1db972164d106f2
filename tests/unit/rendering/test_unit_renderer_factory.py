# tests/unit/rendering/test_unit_renderer_factory.py - v1

from __future__ import annotations

import pytest

from bulkdoc.rendering.local_renderer import LocalRenderer
from bulkdoc.rendering.remote_renderer import RemoteRenderer
from bulkdoc.rendering.renderer_factory import (
    UnsupportedBackendError,
    create_renderer,
    register_backend,
)


class TestCreateRenderer:
    def test_default_local(self, settings):
        assert isinstance(create_renderer(settings), LocalRenderer)

    def test_remote_from_settings(self, settings):
        cfg = settings.model_copy(update={
            "render_api_url": "https://render.test/v1",
            "render_api_key": "k",
        })
        renderer = create_renderer(cfg, backend="remote")
        assert isinstance(renderer, RemoteRenderer)
        assert renderer.backend_name == "remote"

    def test_unknown_backend(self, settings):
        with pytest.raises(UnsupportedBackendError, match="Available: local, remote"):
            create_renderer(settings, backend="fax")

    def test_register_backend(self, settings):
        register_backend("stub", "stubs.StubRenderer")
        try:
            renderer = create_renderer(settings, backend="stub", delay=0.5)
            assert renderer.backend_name == "stub"
            assert renderer.delay == 0.5
        finally:
            from bulkdoc.rendering import renderer_factory
            renderer_factory._BACKEND_REGISTRY.pop("stub", None)
