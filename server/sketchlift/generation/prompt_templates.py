# ─────────────────────────────────────────────────────────────────────────────
# Prompt Templates: system/user instructions and output schemas per mode
# ─────────────────────────────────────────────────────────────────────────────
# System instructions are fixed per mode. User instructions interpolate the
# free-text hint and (when present) the input SVG.
# ─────────────────────────────────────────────────────────────────────────────

import json
from typing import Any

_NO_HINT = "None"


# ── Output schemas ───────────────────────────────────────────────────────────
# Sent as generationConfig.responseSchema for the vector modes. The image
# model cannot take a response schema, so its metadata schema is embedded in
# the instruction text instead.

OUTLINE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "outlinePath": {
            "type": "string",
            "description": (
                "An SVG path 'd' string for ONE cleaned, CLOSED outline. "
                "No <svg> wrapper. No <path> tag. Just the d string."
            ),
        },
        "isClosed": {
            "type": "boolean",
            "description": "True if outlinePath is a closed outline suitable for extrusion.",
        },
        "suggestedDepth": {
            "type": "number",
            "description": "Recommended extrusion depth in world units (e.g. 0.1-0.5).",
        },
        "suggestedBevel": {
            "type": "number",
            "description": "Recommended bevel size in world units. Use 0 for no bevel.",
        },
        "notes": {
            "type": "string",
            "description": "Short explanation of what was repaired.",
        },
    },
    "required": ["outlinePath", "isClosed", "suggestedDepth", "suggestedBevel", "notes"],
}

DUAL_OUTPUT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "displaySvg": {
            "type": "string",
            "description": "A complete styled <svg> document for on-canvas display.",
        },
        "extrusionPath": {
            "type": "string",
            "description": "SVG path 'd' string for ONE closed silhouette used for extrusion.",
        },
        "isClosed": OUTLINE_SCHEMA["properties"]["isClosed"],
        "suggestedDepth": OUTLINE_SCHEMA["properties"]["suggestedDepth"],
        "suggestedBevel": OUTLINE_SCHEMA["properties"]["suggestedBevel"],
        "palette": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Hex colors used in displaySvg.",
        },
        "notes": OUTLINE_SCHEMA["properties"]["notes"],
    },
    "required": [
        "displaySvg",
        "extrusionPath",
        "isClosed",
        "suggestedDepth",
        "suggestedBevel",
        "palette",
        "notes",
    ],
}

IMAGE_METADATA_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "title": {"type": "string"},
        "style": {"type": "string"},
        "palette": {"type": "array", "items": {"type": "string"}},
        "background": {"type": "string"},
        "notes": {"type": "string"},
    },
    "required": ["title", "style", "palette", "background", "notes"],
}


# ── System instructions ──────────────────────────────────────────────────────

_VECTOR_RULES = """
Hard rules:
- Output MUST be valid JSON matching the provided JSON schema.
- Output MUST contain only JSON (no markdown, no extra text).
- The extrusion outline MUST be a single closed outline (one silhouette).
- Prefer smooth, simple geometry with fewer points (remove jitter).
- Preserve the user's intent; do not invent unrelated details.
- If the drawing is ambiguous, choose the most likely intended silhouette and explain in notes.
""".strip()

OUTLINE_SYSTEM_INSTRUCTION = (
    "You are a vector cleanup engine for 3D extrusion.\n"
    "You receive a rough sketch as SVG (from a drawing app).\n"
    "Your job is to output a single clean CLOSED outline as an SVG path 'd' "
    "string suitable for filling and extrusion.\n\n" + _VECTOR_RULES
)

DUAL_SYSTEM_INSTRUCTION = (
    "You are a vector cleanup engine for 3D extrusion.\n"
    "You receive a rough sketch as SVG (from a drawing app).\n"
    "Return two things: a polished, styled SVG document for display, and a "
    "single clean CLOSED outline as an SVG path 'd' string for extrusion.\n\n"
    + _VECTOR_RULES
)

IMAGE_SYSTEM_INSTRUCTION = """
You are an illustration cleanup engine.
You receive a rough hand-drawn sketch as an image, optionally with its SVG strokes.
Redraw it as ONE clean, polished image that preserves the composition and intent.
Also return a short JSON metadata object describing the image.
""".strip()


# ── User instructions ────────────────────────────────────────────────────────


def _hint_text(hint: str | None) -> str:
    return hint.strip() if hint and hint.strip() else _NO_HINT


def build_vector_instruction(svg: str, hint: str | None, contract: str) -> str:
    """User instruction for the vector modes ("outline" or "dual")."""
    field = "outlinePath" if contract == "outline" else "extrusionPath"
    return f"""
Task: Clean and repair this rough sketch so it can be extruded into a 3D model.

What "clean" means:
- Remove jitter and wobbly lines
- Simplify while preserving the intended shape
- Close small gaps; ensure the outline is closed
- Fix minor self-intersections if needed to produce a valid filled silhouette
- Keep the final outline as ONE silhouette (single loop)

Return format:
- Return ONLY JSON that matches the provided schema
- {field} must be ONLY the SVG path 'd' string for the cleaned outline
- Do NOT include <svg> or <path> wrappers in {field}
- Do NOT return multiple paths in {field}

User hints (optional): {_hint_text(hint)}

Input SVG (selection export):
{svg}
""".strip()


def build_image_instruction(hint: str | None, structural_hint: str | None) -> str:
    """User instruction for image mode; metadata schema is embedded."""
    lines = [
        "Task: Redraw the attached rough sketch as a clean illustration.",
        "",
        "- Smooth lines, consistent stroke weight, tidy shapes",
        "- Keep the same subject, pose and composition",
        "- Use a transparent or plain background",
        "",
        f"User hints (optional): {_hint_text(hint)}",
    ]
    if structural_hint and structural_hint.strip():
        lines += ["", "Stroke structure (SVG export of the sketch):", structural_hint.strip()]
    lines += [
        "",
        "Along with the image, return a text part containing ONLY JSON matching this schema:",
        json.dumps(IMAGE_METADATA_SCHEMA),
    ]
    return "\n".join(lines)
