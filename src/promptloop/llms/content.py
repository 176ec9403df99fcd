from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

This module validates structured content blocks (text and media) before they enter a transcript.
"""

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, model_validator

from .types import ContentBlock


class _TextBlockModel(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: Literal["text"]
    text: str = ""


class _MediaBlockModel(BaseModel):
    model_config = ConfigDict(extra="ignore")

    source_type: Literal["base64", "url"]
    data: str | None = None
    media_type: str | None = None
    url: str | None = None

    @model_validator(mode="after")
    def _check_source(self) -> "_MediaBlockModel":
        if self.source_type == "base64":
            if not self.data:
                raise ValueError("data is required for base64 source")
            if not self.media_type:
                raise ValueError("media_type is required for base64 source")
        elif not self.url:
            raise ValueError("url is required for url source")
        return self


class _ImageBlockModel(_MediaBlockModel):
    type: Literal["image"]


class _DocumentBlockModel(_MediaBlockModel):
    type: Literal["document"]


class _AudioBlockModel(_MediaBlockModel):
    type: Literal["audio"]


_BlockModel = Annotated[
    Union[_TextBlockModel, _ImageBlockModel, _DocumentBlockModel, _AudioBlockModel],
    Field(discriminator="type"),
]

_BLOCKS = TypeAdapter(list[_BlockModel])


def normalize_media_type(value: str | None) -> str | None:
    """Lowercase a MIME type and strip its parameters."""
    text = (value or "").strip()
    if not text:
        return None
    base = text.split(";", 1)[0].strip().lower()
    return base or None


def validate_content_blocks(blocks: list[Any]) -> list[ContentBlock]:
    """
    Validate and normalize a list of content blocks.

    Raises:
        ValueError: If any block has an unknown type or an incomplete source.
    """
    prepared: list[Any] = []
    for block in blocks:
        if not isinstance(block, dict):
            prepared.append({"type": "text", "text": str(block)})
            continue
        item = {str(k): v for k, v in block.items()}
        if "type" not in item and "text" in item:
            item["type"] = "text"
        if "media_type" in item:
            item["media_type"] = normalize_media_type(item["media_type"])
        prepared.append(item)

    try:
        models = _BLOCKS.validate_python(prepared)
    except ValidationError as e:
        raise ValueError(str(e)) from e

    return [model.model_dump(exclude_none=True) for model in models]  # type: ignore[misc]
