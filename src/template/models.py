# src/template/models.py - v1
"""Template model types: delimiters, substitution sites, placeholder inventory."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from bulkdoc.core.errors import TemplateError

DelimiterKind = Literal["brace", "bracket", "dollar", "percent"]
TemplateKind = Literal["text", "docx", "pdf"]
ValueKind = Literal["email", "phone", "url", "date", "currency", "number", "boolean", "text"]

# Overlapping matches starting at the same offset resolve in this order.
DELIMITERS: dict[DelimiterKind, tuple[str, str]] = {
    "brace": ("{{", "}}"),
    "bracket": ("[", "]"),
    "dollar": ("$", "$"),
    "percent": ("%", "%"),
}

TEXT_MEDIA_TYPES: frozenset[str] = frozenset({"text/plain", "text/html", "text/markdown"})
DOCX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
PDF_MEDIA_TYPE = "application/pdf"


class SubstitutionSite(BaseModel):
    """One placeholder occurrence in a textual template body.

    ``offset`` and ``length`` are in bytes of the encoded body and cover the
    delimiters as well as the name.
    """

    model_config = ConfigDict(frozen=True)

    offset: int = Field(ge=0)
    length: int = Field(ge=1)
    kind: DelimiterKind
    name: str

    @property
    def end(self) -> int:
        return self.offset + self.length


class PlaceholderInfo(BaseModel):
    """Inventory entry for one placeholder name."""

    model_config = ConfigDict(frozen=True)

    name: str
    occurrences: int = Field(ge=1)
    kinds: tuple[DelimiterKind, ...]
    value_kind: ValueKind = "text"
    required: bool = True


class TemplateModel(BaseModel):
    """Immutable parsed template.

    Textual templates carry their body and a byte-level substitution plan.
    DOCX and PDF templates carry the original bytes and the placeholder
    inventory only; substitution for them happens in the renderer.
    """

    model_config = ConfigDict(frozen=True)

    name: str = "template"
    kind: TemplateKind
    media_type: str
    body: bytes
    encoding: str | None = None
    placeholders: tuple[str, ...] = ()
    plan: tuple[SubstitutionSite, ...] = ()
    required: frozenset[str] = frozenset()
    inventory: tuple[PlaceholderInfo, ...] = ()

    @property
    def is_textual(self) -> bool:
        return self.kind == "text"

    @property
    def optional(self) -> frozenset[str]:
        return frozenset(self.placeholders) - self.required

    @property
    def extension(self) -> str:
        if self.kind == "text":
            return {"text/html": "html", "text/markdown": "md"}.get(self.media_type, "txt")
        return self.kind

    def info(self, name: str) -> PlaceholderInfo | None:
        for entry in self.inventory:
            if entry.name == name:
                return entry
        return None

    def missing_from(self, headers: Iterable[str]) -> list[str]:
        """Required placeholder names absent from ``headers``, in template order."""
        available = set(headers)
        return [n for n in self.placeholders if n in self.required and n not in available]

    def with_required(self, names: Iterable[str]) -> TemplateModel:
        """Return a copy whose required set is narrowed to ``names``.

        Raises:
            TemplateError: If a name is not a placeholder of this template.
        """
        wanted = frozenset(names)
        unknown = wanted - set(self.placeholders)
        if unknown:
            raise TemplateError(
                f"Not placeholders of {self.name}: {', '.join(sorted(unknown))}"
            )
        inventory = tuple(
            entry.model_copy(update={"required": entry.name in wanted})
            for entry in self.inventory
        )
        return self.model_copy(update={"required": wanted, "inventory": inventory})
