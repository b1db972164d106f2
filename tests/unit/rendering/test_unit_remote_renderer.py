# tests/unit/rendering/test_unit_remote_renderer.py - v1
"""Tests for rendering/remote_renderer.py over httpx.MockTransport."""

from __future__ import annotations

import httpx
import pytest

from bulkdoc.core.errors import (
    MissingRequiredField,
    RenderTimeout,
    UpstreamFatal,
    UpstreamTransient,
)
from bulkdoc.core.models import OutputOptions
from bulkdoc.rendering.remote_renderer import RemoteRenderer

RECORD = {"name": "Ada", "email": "ada@example.com", "amount": 5}


def make_renderer(handler) -> tuple[RemoteRenderer, list[httpx.Request]]:
    seen: list[httpx.Request] = []

    def record(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(record))
    return RemoteRenderer("https://render.test/v1/", "key-123", client=client), seen


class TestRemoteRendererRequest:
    @pytest.mark.asyncio
    async def test_posts_generate_with_headers(self, invoice_template):
        renderer, seen = make_renderer(lambda r: httpx.Response(200, content=b"%PDF-1.7 doc"))
        out = await renderer.render(
            invoice_template, RECORD, OutputOptions(watermark="DRAFT"), 3, "abc123",
        )
        assert out == b"%PDF-1.7 doc"
        [request] = seen
        assert request.method == "POST"
        assert str(request.url) == "https://render.test/v1/generate"
        assert request.headers["Authorization"] == "Bearer key-123"
        assert request.headers["Idempotency-Key"] == "abc123"
        assert request.headers["Content-Type"].startswith("multipart/form-data")

    @pytest.mark.asyncio
    async def test_multipart_fields(self, invoice_template):
        renderer, seen = make_renderer(lambda r: httpx.Response(200, content=b"doc"))
        await renderer.render(
            invoice_template, RECORD, OutputOptions(format="docx", quality="high"), 1,
        )
        body = seen[0].read()
        assert b'name="format"' in body and b"docx" in body
        assert b'name="quality"' in body and b"high" in body
        assert b'filename="invoice.txt"' in body
        # textual templates are substituted before upload
        assert b"Dear Ada," in body
        assert "Idempotency-Key" not in seen[0].headers

    @pytest.mark.asyncio
    async def test_missing_field_fails_before_request(self, invoice_template):
        renderer, seen = make_renderer(lambda r: httpx.Response(200, content=b"doc"))
        with pytest.raises(MissingRequiredField):
            await renderer.render(invoice_template, {"name": "Ada"}, OutputOptions(), 1)
        assert seen == []


class TestRemoteRendererErrors:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [408, 429, 500, 503])
    async def test_transient_status(self, invoice_template, status):
        renderer, _ = make_renderer(lambda r: httpx.Response(status))
        with pytest.raises(UpstreamTransient) as exc_info:
            await renderer.render(invoice_template, RECORD, OutputOptions(), 1)
        assert exc_info.value.status_code == status

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [400, 401, 422])
    async def test_fatal_status(self, invoice_template, status):
        renderer, _ = make_renderer(
            lambda r: httpx.Response(status, json={"error": "bad template"}),
        )
        with pytest.raises(UpstreamFatal, match="bad template"):
            await renderer.render(invoice_template, RECORD, OutputOptions(), 1)

    @pytest.mark.asyncio
    async def test_empty_document_is_fatal(self, invoice_template):
        renderer, _ = make_renderer(lambda r: httpx.Response(200, content=b""))
        with pytest.raises(UpstreamFatal):
            await renderer.render(invoice_template, RECORD, OutputOptions(), 1)

    @pytest.mark.asyncio
    async def test_timeout(self, invoice_template):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        renderer, _ = make_renderer(handler)
        with pytest.raises(RenderTimeout):
            await renderer.render(invoice_template, RECORD, OutputOptions(), 1)

    @pytest.mark.asyncio
    async def test_connection_error_is_transient(self, invoice_template):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        renderer, _ = make_renderer(handler)
        with pytest.raises(UpstreamTransient):
            await renderer.render(invoice_template, RECORD, OutputOptions(), 1)


class TestRemoteRendererLifecycle:
    @pytest.mark.asyncio
    async def test_injected_client_not_closed(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        renderer = RemoteRenderer("https://render.test", "k", client=client)
        await renderer.close()
        assert not client.is_closed
        await client.aclose()

    @pytest.mark.asyncio
    async def test_owned_client_closed(self):
        renderer = RemoteRenderer("https://render.test", "k")
        client = renderer._client
        await renderer.close()
        assert client.is_closed
