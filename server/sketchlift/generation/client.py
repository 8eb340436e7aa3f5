# ─────────────────────────────────────────────────────────────────────────────
# Generation Client: Gemini generateContent over httpx
# ─────────────────────────────────────────────────────────────────────────────
# Builds the structured-output request for a mode, calls the provider with
# a short connect timeout and a long read timeout, then validates and
# normalizes the reply. Fingerprinting and caching are the caller's concern.
#
# Failure classification:
#   httpx.TimeoutException        → APIError(timeout=True)   kind="timeout"
#   other httpx.HTTPError         → APIError                 kind="transport"
#   non-2xx status                → APIError(http_status=…)  kind="http_status"
#   malformed / incomplete reply  → InvalidResponseError     (not retried)
# ─────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

import base64
import io
import time
from dataclasses import dataclass
from typing import Any, cast

import httpx
import PIL.Image
import structlog

from sketchlift.config import Settings
from sketchlift.exceptions import (
    APIError,
    ConfigurationError,
    InvalidArtifactError,
    InvalidResponseError,
)
from sketchlift.generation import prompt_templates as templates
from sketchlift.generation.replies import (
    DualOutputReply,
    OutlineReply,
    normalize,
    parse_image_metadata,
    parse_json_text,
    validate_reply,
)
from sketchlift.schemas import ImageResult, ImprovementRequest, VectorResult

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ProviderRequest:
    """What the provider is asked: instructions, schema, optional image."""

    system_instruction: str
    user_instruction: str
    output_schema: dict[str, Any] | None
    inline_image: tuple[str, bytes] | None = None  # (mime_type, data)

    def to_payload(self) -> dict[str, Any]:
        parts: list[dict[str, Any]] = [{"text": self.user_instruction}]
        generation_config: dict[str, Any]
        if self.inline_image is not None:
            mime_type, data = self.inline_image
            parts.append(
                {
                    "inline_data": {
                        "mime_type": mime_type,
                        "data": base64.b64encode(data).decode("ascii"),
                    }
                }
            )
            generation_config = {"responseModalities": ["TEXT", "IMAGE"]}
        else:
            generation_config = {
                "responseMimeType": "application/json",
                "responseSchema": self.output_schema,
            }
        return {
            "systemInstruction": {"parts": [{"text": self.system_instruction}]},
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": generation_config,
        }


def sniff_image_mime(data: bytes) -> str:
    """MIME type of a raster artifact, via Pillow."""
    try:
        with PIL.Image.open(io.BytesIO(data)) as image:
            fmt = image.format
    except (PIL.UnidentifiedImageError, OSError) as e:
        raise InvalidArtifactError("Submitted image could not be decoded") from e
    mime = PIL.Image.MIME.get(fmt or "")
    if mime is None:
        raise InvalidArtifactError(f"Unsupported image format: {fmt}")
    return mime


class GenerationClient:
    """Calls the external generation provider and returns canonical results.

    One instance per process; the underlying httpx.Client pools
    connections and is closed by the process entry point.
    """

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        vector_model: str = "gemini-2.0-flash-exp",
        image_model: str = "gemini-2.5-flash-image",
        vector_contract: str = "dual",
        connect_timeout: float = 10.0,
        read_timeout: float = 180.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if not api_key:
            raise ConfigurationError("GEMINI_API_KEY environment variable is required")
        if vector_contract not in ("outline", "dual"):
            raise ConfigurationError(f"Unknown vector contract: {vector_contract!r}")
        self._vector_model = vector_model
        self._image_model = image_model
        self._vector_contract = vector_contract
        self._http = httpx.Client(
            base_url=base_url,
            headers={"x-goog-api-key": api_key},
            timeout=httpx.Timeout(read_timeout, connect=connect_timeout),
            transport=transport,
        )

    @classmethod
    def from_settings(
        cls, settings: Settings, transport: httpx.BaseTransport | None = None
    ) -> GenerationClient:
        return cls(
            settings.gemini_api_key.get_secret_value(),
            base_url=settings.gemini_base_url,
            vector_model=settings.gemini_vector_model,
            image_model=settings.gemini_image_model,
            vector_contract=settings.vector_contract,
            connect_timeout=settings.provider_connect_timeout_seconds,
            read_timeout=settings.provider_read_timeout_seconds,
            transport=transport,
        )

    def close(self) -> None:
        self._http.close()

    # ── Request building ─────────────────────────────────────────────────────

    def build_request(self, request: ImprovementRequest) -> ProviderRequest:
        artifact = request.artifact
        if isinstance(artifact, bytes):
            return ProviderRequest(
                system_instruction=templates.IMAGE_SYSTEM_INSTRUCTION,
                user_instruction=templates.build_image_instruction(
                    request.hint, request.structural_hint
                ),
                output_schema=templates.IMAGE_METADATA_SCHEMA,
                inline_image=(sniff_image_mime(artifact), artifact),
            )

        if self._vector_contract == "outline":
            system, schema = templates.OUTLINE_SYSTEM_INSTRUCTION, templates.OUTLINE_SCHEMA
        else:
            system, schema = templates.DUAL_SYSTEM_INSTRUCTION, templates.DUAL_OUTPUT_SCHEMA
        return ProviderRequest(
            system_instruction=system,
            user_instruction=templates.build_vector_instruction(
                artifact, request.hint, self._vector_contract
            ),
            output_schema=schema,
        )

    # ── Generate ─────────────────────────────────────────────────────────────

    def generate(self, request: ImprovementRequest) -> VectorResult | ImageResult:
        """Blocking provider call. Raises APIError / InvalidResponseError."""
        provider_request = self.build_request(request)
        model = self._image_model if request.mode == "image" else self._vector_model
        body = self._post(model, provider_request.to_payload())
        parts = self._first_candidate_parts(body)

        if request.mode == "image":
            return self._parse_image(parts)

        text = self._first_text(parts)
        if not text:
            raise InvalidResponseError("No text content in response")
        reply_model = OutlineReply if self._vector_contract == "outline" else DualOutputReply
        reply = validate_reply(parse_json_text(text), reply_model)
        return normalize(reply)

    def _post(self, model: str, payload: dict[str, Any]) -> dict[str, Any]:
        url = f"/models/{model}:generateContent"
        t0 = time.perf_counter()
        try:
            response = self._http.post(url, json=payload)
        except httpx.TimeoutException as e:
            logger.warning("provider_timeout", model=model, error_type=type(e).__name__)
            raise APIError(f"Provider request timed out ({type(e).__name__})", timeout=True) from e
        except httpx.HTTPError as e:
            logger.warning("provider_transport_error", model=model, error=str(e))
            raise APIError(f"Failed to call provider: {e}") from e

        elapsed_ms = round((time.perf_counter() - t0) * 1000, 1)
        if response.is_error:
            logger.error(
                "provider_error_response",
                model=model,
                status=response.status_code,
                body=response.text[:500],
            )
            raise APIError(
                f"Provider returned HTTP {response.status_code}",
                http_status=response.status_code,
            )

        logger.info("provider_call_complete", model=model, time_ms=elapsed_ms)
        try:
            body = response.json()
        except ValueError as e:
            raise InvalidResponseError("Provider response body is not JSON") from e
        if not isinstance(body, dict):
            raise InvalidResponseError("Provider response body is not an object")
        return body

    # ── Reply extraction ─────────────────────────────────────────────────────

    @staticmethod
    def _first_candidate_parts(body: dict[str, Any]) -> list[dict[str, Any]]:
        candidates = body.get("candidates")
        if candidates is not None and not isinstance(candidates, list):
            raise InvalidResponseError("candidates: expected a list")
        if not candidates:
            raise InvalidResponseError("No candidates in response")
        candidate = candidates[0]
        if not isinstance(candidate, dict):
            raise InvalidResponseError("candidates[0]: expected an object")
        content = candidate.get("content") or {}
        if not isinstance(content, dict):
            raise InvalidResponseError("candidates[0].content: expected an object")
        parts = content.get("parts") or []
        if not isinstance(parts, list):
            raise InvalidResponseError("candidates[0].content.parts: expected a list")
        return [p for p in parts if isinstance(p, dict)]

    @staticmethod
    def _first_text(parts: list[dict[str, Any]]) -> str | None:
        for part in parts:
            text = part.get("text")
            if isinstance(text, str) and text.strip():
                return text
        return None

    def _parse_image(self, parts: list[dict[str, Any]]) -> ImageResult:
        inline = None
        for part in parts:
            # REST replies use camelCase; some SDK dumps use snake_case.
            inline = part.get("inlineData") or part.get("inline_data")
            if inline:
                break
        if not inline:
            raise InvalidResponseError("No image content in response")
        if not isinstance(inline, dict):
            raise InvalidResponseError("inlineData: expected an object")
        data = inline.get("data")
        if not isinstance(data, str) or not data:
            raise InvalidResponseError("No image content in response")

        mime_type = inline.get("mimeType") or inline.get("mime_type") or "image/png"
        if not isinstance(mime_type, str):
            raise InvalidResponseError("inlineData.mimeType: expected a string")
        metadata = parse_image_metadata(self._first_text(parts))
        return cast(ImageResult, normalize(metadata, image_base64=data, mime_type=mime_type))
