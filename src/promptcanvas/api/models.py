"""Pydantic request models for the PromptCanvas history API.

The browser client sends camelCase JSON, so every field is exposed under its
camelCase alias while Python code uses snake_case names.

Models
------
CreateHistoryRequest
    Payload for ``POST /api/history``: the generated image plus the prompt
    metadata and any reference images used to produce it.
"""

from __future__ import annotations

from typing import get_args

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from promptcanvas.core.history import GenerationMode, normalize_mode
from promptcanvas.core.keys import DEFAULT_MIME_TYPE

VALID_MODES = frozenset(get_args(GenerationMode))
REFERENCE_IMAGE_MODES = frozenset({"img2img", "outpaint"})


class CreateHistoryRequest(BaseModel):
    """Request body for the ``POST /api/history`` endpoint.

    ``image_data`` and ``prompt`` are required by the route, not by the
    model, so a missing value yields the API's own 400 message rather than
    a schema error.

    Attributes:
        image_data: Generated image as base64, optionally a data URI.
        thumbnail_data: Client-rendered thumbnail as base64.
        input_image_data: Single reference image (legacy clients).
        input_image_mime_type: MIME type for reference images without a
            data-URI prefix.
        input_images_data: Reference images (current clients).  Takes
            precedence over ``input_image_data`` when non-empty.
        prompt: Prompt used for the generation.
        mode: ``text2img``, ``img2img`` or ``outpaint``; the long forms
            ``text-to-image`` and ``image-to-image`` are accepted too.
        model: Generation model identifier.
        aspect_ratio: Optional aspect ratio label.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    image_data: str | None = Field(default=None, description="Generated image (base64 / data URI).")
    thumbnail_data: str | None = Field(default=None, description="Thumbnail (base64 / data URI).")
    input_image_data: str | None = Field(
        default=None,
        description="Single reference image (legacy).",
    )
    input_image_mime_type: str = Field(
        default=DEFAULT_MIME_TYPE,
        description="Fallback MIME type for reference images.",
    )
    input_images_data: list[str] | None = Field(
        default=None,
        description="Reference images, in order.",
    )
    prompt: str | None = Field(default=None, description="Generation prompt.")
    mode: str = Field(default="text2img", description="Generation mode.")
    model: str | None = Field(default=None, description="Generation model identifier.")
    aspect_ratio: str | None = Field(default=None, description="Aspect ratio label.")

    @field_validator("mode", mode="before")
    @classmethod
    def _check_mode(cls, value):
        mode = normalize_mode(value)
        if mode not in VALID_MODES:
            raise ValueError(f"mode must be one of {sorted(VALID_MODES)}")
        return mode

    @property
    def reference_images(self) -> list[str]:
        """Reference image payloads to store for this request, in order."""
        if self.mode not in REFERENCE_IMAGE_MODES:
            return []
        if self.input_images_data:
            return list(self.input_images_data)
        return [self.input_image_data] if self.input_image_data else []
