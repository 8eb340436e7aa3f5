# ─────────────────────────────────────────────────────────────────────────────
# Provider Replies: per-contract reply models + one normalization step
# ─────────────────────────────────────────────────────────────────────────────
# Each provider contract has its own reply model. Field spellings vary
# between contract revisions (outlinePath vs cleanSvgPath, camelCase vs
# snake_case), so every field lists its accepted aliases here and nowhere
# else. normalize() is the only place a reply becomes an ImprovementResult.
# ─────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

import html
import json
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from sketchlift.exceptions import InvalidResponseError
from sketchlift.schemas import ImageResult, VectorResult


def _aliases(*names: str) -> AliasChoices:
    return AliasChoices(*names)


class _Reply(BaseModel):
    model_config = ConfigDict(extra="ignore")


class OutlineReply(_Reply):
    """Single closed-outline contract."""

    outline_path: str = Field(validation_alias=_aliases("outlinePath", "cleanSvgPath", "outline_path", "clean_svg_path"))
    is_closed: bool = Field(validation_alias=_aliases("isClosed", "is_closed"))
    suggested_depth: float = Field(validation_alias=_aliases("suggestedDepth", "suggested_depth"))
    suggested_bevel: float = Field(validation_alias=_aliases("suggestedBevel", "suggested_bevel"))
    notes: str = Field(validation_alias=_aliases("notes"))


class DualOutputReply(_Reply):
    """Dual-output contract: display SVG + extrusion outline."""

    display_svg: str = Field(validation_alias=_aliases("displaySvg", "display_svg"))
    extrusion_path: str = Field(validation_alias=_aliases("extrusionPath", "extrusion_path"))
    is_closed: bool = Field(validation_alias=_aliases("isClosed", "is_closed"))
    suggested_depth: float = Field(validation_alias=_aliases("suggestedDepth", "suggested_depth"))
    suggested_bevel: float = Field(validation_alias=_aliases("suggestedBevel", "suggested_bevel"))
    palette: list[str] = Field(validation_alias=_aliases("palette"))
    notes: str = Field(validation_alias=_aliases("notes"))


class ImageMetadataReply(_Reply):
    """Best-effort metadata accompanying an image-mode reply."""

    title: str = "Improved sketch"
    style: str = "clean illustration"
    palette: list[str] = Field(default_factory=list)
    background: str = "transparent"
    notes: str = "Metadata unavailable; image returned as-is."


# ── Validation helpers ───────────────────────────────────────────────────────


def _missing_fields(parsed: dict[str, Any], model: type[BaseModel]) -> list[str]:
    """Required fields absent under every accepted spelling."""
    missing = []
    for field in model.model_fields.values():
        if not field.is_required():
            continue
        choices = field.validation_alias.choices  # type: ignore[union-attr]
        if not any(name in parsed for name in choices):
            missing.append(str(choices[0]))
    return missing


def _describe(error: ValidationError) -> str:
    details = [
        f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
        for err in error.errors()
    ]
    return "Invalid field values: " + "; ".join(details)


def parse_json_text(text: str) -> dict[str, Any]:
    """Parse the provider's JSON text part, tolerating a markdown fence."""
    stripped = text.strip()
    if stripped.startswith("```"):
        stripped = stripped.strip("`")
        if stripped.lower().startswith("json"):
            stripped = stripped[4:]
    try:
        parsed = json.loads(stripped)
    except json.JSONDecodeError as e:
        raise InvalidResponseError(f"Invalid JSON response from provider: {e}") from e
    if not isinstance(parsed, dict):
        raise InvalidResponseError("Provider JSON is not an object")
    return parsed


def validate_reply(parsed: dict[str, Any], model: type[_Reply]) -> _Reply:
    """Strict validation: missing required fields are rejected."""
    missing = _missing_fields(parsed, model)
    if missing:
        raise InvalidResponseError(f"Missing required fields: {', '.join(missing)}")
    try:
        return model.model_validate(parsed)
    except ValidationError as e:
        raise InvalidResponseError(_describe(e)) from e


def parse_image_metadata(text: str | None) -> ImageMetadataReply:
    """Lenient parsing: any failure falls back to the default metadata."""
    if not text:
        return ImageMetadataReply()
    try:
        return ImageMetadataReply.model_validate(parse_json_text(text))
    except (InvalidResponseError, ValidationError):
        return ImageMetadataReply()


# ── Normalization ────────────────────────────────────────────────────────────


def _wrap_path(d: str) -> str:
    return (
        '<svg xmlns="http://www.w3.org/2000/svg">'
        f'<path d="{html.escape(d, quote=True)}" fill="none" stroke="#111111" stroke-width="2"/>'
        "</svg>"
    )


def normalize(
    reply: _Reply,
    image_base64: str | None = None,
    mime_type: str = "image/png",
) -> VectorResult | ImageResult:
    """Turn any contract's reply into the canonical result type."""
    if isinstance(reply, DualOutputReply):
        return VectorResult(
            display_svg=reply.display_svg,
            extrusion_path=reply.extrusion_path,
            is_closed=reply.is_closed,
            suggested_depth=reply.suggested_depth,
            suggested_bevel=reply.suggested_bevel,
            palette=reply.palette,
            notes=reply.notes,
        )
    if isinstance(reply, OutlineReply):
        return VectorResult(
            display_svg=_wrap_path(reply.outline_path),
            extrusion_path=reply.outline_path,
            is_closed=reply.is_closed,
            suggested_depth=reply.suggested_depth,
            suggested_bevel=reply.suggested_bevel,
            palette=[],
            notes=reply.notes,
        )
    if isinstance(reply, ImageMetadataReply):
        if image_base64 is None:
            raise InvalidResponseError("No image content in response")
        return ImageResult(
            image_base64=image_base64,
            mime_type=mime_type,
            title=reply.title,
            style=reply.style,
            palette=reply.palette,
            background=reply.background,
            notes=reply.notes,
        )
    raise TypeError(f"Unknown reply type: {type(reply).__name__}")
