# src/rendering/remote_renderer.py - v1
"""HTTP rendering backend: POST <api_url>/generate over httpx.

Textual templates are substituted locally and sent ready to render; DOCX
and PDF templates are sent as-is with the record as JSON so the service
performs the format-specific substitution. Every request carries an
Idempotency-Key derived from (batch, row), identical across retries.
"""

from __future__ import annotations

import json
import logging

import httpx

from bulkdoc.core.errors import RenderTimeout, UpstreamFatal, UpstreamTransient
from bulkdoc.core.models import OutputOptions, Record
from bulkdoc.rendering.base_renderer import BaseRenderer
from bulkdoc.template.models import TemplateModel
from bulkdoc.template.substitution import render_text, resolve

logger = logging.getLogger(__name__)

TRANSIENT_STATUS_CODES: frozenset[int] = frozenset({408, 425, 429})
_DEFAULT_TIMEOUT = httpx.Timeout(connect=10.0, read=300.0, write=60.0, pool=30.0)


class RemoteRenderer(BaseRenderer):
    """Adapter for an external document generation API."""

    def __init__(
        self,
        api_url: str,
        api_key: str,
        client: httpx.AsyncClient | None = None,
        timeout: httpx.Timeout | float = _DEFAULT_TIMEOUT,
    ) -> None:
        self._api_url = api_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._owns_client = client is None
        self.__client = client

    @property
    def backend_name(self) -> str:
        return "remote"

    @property
    def _client(self) -> httpx.AsyncClient:
        """Lazy-init the HTTP client (only on first call)."""
        if self.__client is None:
            self.__client = httpx.AsyncClient(timeout=self._timeout)
        return self.__client

    async def render(
        self,
        template: TemplateModel,
        record: Record,
        options: OutputOptions,
        row_index: int,
        idempotency_key: str | None = None,
    ) -> bytes:
        if template.is_textual:
            body = render_text(template, record, row_index, options)
        else:
            for name in template.placeholders:
                resolve(template, record, name, row_index)
            body = template.body

        headers = {"Authorization": f"Bearer {self._api_key}"}
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key

        data = {
            "data": json.dumps(dict(record)),
            "format": options.format,
            "quality": options.quality,
            "includeMetadata": "true" if options.include_metadata else "false",
        }
        if options.watermark:
            data["watermark"] = options.watermark
        if options.password:
            data["password"] = options.password
        filename = template.name
        if not filename.lower().endswith(f".{template.extension}"):
            filename = f"{filename}.{template.extension}"
        files = {"template": (filename, body, template.media_type)}

        try:
            response = await self._client.post(
                f"{self._api_url}/generate", headers=headers, data=data, files=files,
            )
        except httpx.TimeoutException as exc:
            raise RenderTimeout(f"Render request for row {row_index} timed out") from exc
        except httpx.TransportError as exc:
            raise UpstreamTransient(f"Render request for row {row_index} failed: {exc}") from exc

        return self._check_response(response, row_index)

    @staticmethod
    def _check_response(response: httpx.Response, row_index: int) -> bytes:
        status = response.status_code
        if status in TRANSIENT_STATUS_CODES or status >= 500:
            raise UpstreamTransient(
                f"Render service returned {status} for row {row_index}", status_code=status,
            )
        if not response.is_success:
            raise UpstreamFatal(
                f"Render service rejected row {row_index} with {status}: {_error_detail(response)}",
                status_code=status,
            )
        if not response.content:
            raise UpstreamFatal(f"Render service returned an empty document for row {row_index}")
        return response.content

    async def close(self) -> None:
        if self._owns_client and self.__client is not None:
            await self.__client.aclose()
            self.__client = None


def _error_detail(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(payload, dict):
        return str(payload.get("error") or payload.get("message") or payload)[:200]
    return str(payload)[:200]
