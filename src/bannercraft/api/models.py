"""Pydantic request models for the Bannercraft API.

These models define the JSON schema for every API endpoint.  FastAPI uses
them for automatic request validation, serialisation, and OpenAPI
documentation generation.  The wire format is camelCase (``businessName``);
attributes are snake_case (``business_name``).  Both spellings are accepted
on input.

Models
------
GenerateInitialDesignRequest
    Payload for ``POST /api/generate-initial-design``.
GenerateDesignIterationRequest
    Payload for ``POST /api/generate-design-iteration``.
CreatePromptRequest / UpdatePromptRequest
    Payloads for prompt template CRUD.
ListPromptsQuery
    Filters and pagination for ``GET /api/prompts``.
JsonPlanRequest
    Payload for ``POST /api/generate-json-plan``.
"""

from __future__ import annotations

import re
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from bannercraft.core.models import Panel, PanelPosition

IMAGE_EXTENSIONS = (
    ".jpg",
    ".jpeg",
    ".png",
    ".gif",
    ".bmp",
    ".webp",
    ".svg",
    ".ico",
    ".tiff",
    ".tif",
)

_BANNER_SIZE_RE = re.compile(r"^\d+[x×]\d+$")
_HEX_COLOUR_RE = r"^#[0-9A-Fa-f]{6}$"

ContactType = Literal[
    "phone",
    "email",
    "website",
    "facebook",
    "instagram",
    "twitter",
    "x",
    "tiktok",
    "snapchat",
]


def is_image_url(url: str) -> bool:
    """Return True if the URL path (query string ignored) ends in an image extension."""
    path = url.lower().split("?", 1)[0]
    return path.endswith(IMAGE_EXTENSIONS)


class CamelModel(BaseModel):
    """Base model with camelCase aliases on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DesignPreferences(CamelModel):
    """Visual preferences for a banner.

    Attributes:
        style: Free-text style description (required).
        colors: Optional list of ``#RRGGBB`` colours.
    """

    style: str = Field(..., min_length=1)
    colors: list[str] | None = None

    @field_validator("colors")
    @classmethod
    def _check_colours(cls, value: list[str] | None) -> list[str] | None:
        if value is None:
            return value
        for colour in value:
            if not re.match(_HEX_COLOUR_RE, colour):
                raise ValueError("Colors must be valid hex codes")
        return value


class ImageInput(CamelModel):
    """An image the generator should use on one or both panels."""

    url: str
    image_instructions_for_llm: str = Field(..., min_length=1)
    panel: Panel

    @field_validator("url")
    @classmethod
    def _check_image_url(cls, value: str) -> str:
        if not is_image_url(value):
            raise ValueError("URL must be an image URL")
        return value


class ContactEntry(CamelModel):
    """A contact method to print on one or both panels."""

    type: ContactType
    value: str = Field(..., min_length=1)
    panel: Panel


class GenerateInitialDesignRequest(CamelModel):
    """Request body for ``POST /api/generate-initial-design``.

    Attributes:
        user_id: Owner of the design (positive integer).
        business_name: Business name printed on the banner.
        industry_type: Industry the business operates in.
        design_text: Main banner copy.
        banner_size: ``"<width>x<height>"`` (``x`` or ``×``, whitespace ignored).
        preferences: Style and colour preferences.
        image_inputs: Logos, headshots and inspiration images, each bound to
            a panel.
        contacts: Up to eight contact methods, each bound to a panel.
        top_panel_prompt_id: Optional prompt template override for the top
            panel.  Defaults to the active default TOP prompt.
        bottom_panel_prompt_id: Optional prompt template override for the
            bottom panel.
    """

    user_id: int = Field(..., gt=0)
    business_name: str = Field(..., min_length=1, max_length=100)
    industry_type: str = Field(..., min_length=1, max_length=100)
    design_text: str = Field(..., min_length=1, max_length=500)
    banner_size: str = Field(..., min_length=1)
    preferences: DesignPreferences
    image_inputs: list[ImageInput] | None = None
    contacts: list[ContactEntry] | None = Field(default=None, max_length=8)
    top_panel_prompt_id: UUID | None = None
    bottom_panel_prompt_id: UUID | None = None

    @field_validator("banner_size")
    @classmethod
    def _check_banner_size(cls, value: str) -> str:
        if not _BANNER_SIZE_RE.match(re.sub(r"\s+", "", value)):
            raise ValueError(
                'Banner size must be in format "width×height" or "widthxheight" '
                '(e.g., "1800×600" or "1800x600")'
            )
        return value

    def to_wire(self) -> dict:
        """Return the payload as camelCase JSON-compatible data."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class GenerateDesignIterationRequest(CamelModel):
    """Request body for ``POST /api/generate-design-iteration``.

    At least one of the two notes fields must carry non-blank text; a panel
    without notes keeps its current image.
    """

    initial_design_id: UUID
    top_panel_iteration_notes: str | None = Field(default=None, min_length=1, max_length=1000)
    bottom_panel_iteration_notes: str | None = Field(default=None, min_length=1, max_length=1000)

    @model_validator(mode="after")
    def _require_notes(self) -> GenerateDesignIterationRequest:
        top = (self.top_panel_iteration_notes or "").strip()
        bottom = (self.bottom_panel_iteration_notes or "").strip()
        if not top and not bottom:
            raise ValueError(
                "At least one iteration notes field must be provided "
                "(topPanelIterationNotes or bottomPanelIterationNotes)"
            )
        return self


class CreatePromptRequest(CamelModel):
    """Request body for ``POST /api/prompts``."""

    name: str = Field(..., min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=1000)
    panel_position: PanelPosition
    prompt_template: str = Field(..., min_length=1)
    version: int = Field(default=1, gt=0)
    is_active: bool = True
    is_default: bool = False
    created_by: str | None = None


class UpdatePromptRequest(CamelModel):
    """Request body for ``PATCH /api/prompts/{id}``; at least one field is required."""

    name: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=1000)
    panel_position: PanelPosition | None = None
    prompt_template: str | None = Field(default=None, min_length=1)
    version: int | None = Field(default=None, gt=0)
    is_active: bool | None = None
    is_default: bool | None = None
    created_by: str | None = None

    @model_validator(mode="after")
    def _require_a_field(self) -> UpdatePromptRequest:
        if not self.changes():
            raise ValueError("At least one field must be provided for update")
        return self

    def changes(self) -> dict:
        """Return the fields that were supplied, as snake_case column values."""
        return self.model_dump(mode="json", exclude_none=True)


class ListPromptsQuery(CamelModel):
    """Filters and pagination for ``GET /api/prompts``."""

    panel_position: PanelPosition | None = None
    is_active: bool | None = None
    is_default: bool | None = None
    limit: int = Field(default=50, gt=0, le=100)
    offset: int = Field(default=0, ge=0)


class JsonPlanRequest(BaseModel):
    """Request body for ``POST /api/generate-json-plan``."""

    prompt: str = Field(..., min_length=1)
