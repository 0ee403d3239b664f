"""Persisted record types for prompts, designs and design iterations."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any


class DesignStatus(str, Enum):
    """Lifecycle of a design or iteration: PENDING -> PROCESSING -> COMPLETED | FAILED."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class PanelPosition(str, Enum):
    """Panel a prompt template is written for."""

    TOP = "TOP"
    BOTTOM = "BOTTOM"


class Panel(str, Enum):
    """Panel placement of an image input or contact."""

    TOP = "top"
    BOTTOM = "bottom"
    TOP_BOTTOM = "top_bottom"


@dataclass
class Prompt:
    """A reusable prompt template bound to one panel."""

    id: str
    name: str
    panel_position: PanelPosition
    prompt_template: str
    description: str | None = None
    version: int = 1
    is_active: bool = True
    is_default: bool = False
    created_by: str | None = None
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["panel_position"] = self.panel_position.value
        return data


@dataclass
class Design:
    """An initial design request plus its rendered prompts and generated panels.

    ``preferences``, ``image_inputs`` and ``contacts`` hold the validated
    request payload in its JSON wire shape (camelCase keys), exactly as it was
    received.
    """

    id: str
    user_id: int
    business_name: str
    industry_type: str
    design_text: str
    banner_size: str
    preferences: dict[str, Any] = field(default_factory=dict)
    image_inputs: list[dict[str, Any]] = field(default_factory=list)
    contacts: list[dict[str, Any]] = field(default_factory=list)
    top_panel_prompt: str | None = None
    bottom_panel_prompt: str | None = None
    top_panel_prompt_template_id: str | None = None
    bottom_panel_prompt_template_id: str | None = None
    status: DesignStatus = DesignStatus.PENDING
    error_message: str | None = None
    generated_top_panel_image_url: str | None = None
    generated_bottom_panel_image_url: str | None = None
    bucket: str | None = None
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data


@dataclass
class DesignIteration:
    """A follow-up regeneration of one or both panels of a completed design."""

    id: str
    design_id: str
    iteration_number: int
    top_panel_iteration_notes: str | None = None
    bottom_panel_iteration_notes: str | None = None
    original_top_panel_prompt: str | None = None
    original_bottom_panel_prompt: str | None = None
    original_top_panel_prompt_template_id: str | None = None
    original_bottom_panel_prompt_template_id: str | None = None
    status: DesignStatus = DesignStatus.PENDING
    error_message: str | None = None
    generated_top_panel_image_url: str | None = None
    generated_bottom_panel_image_url: str | None = None
    bucket: str | None = None
    created_at: str = ""
    updated_at: str = ""

    def regenerates_top(self) -> bool:
        return bool(self.top_panel_iteration_notes and self.top_panel_iteration_notes.strip())

    def regenerates_bottom(self) -> bool:
        return bool(
            self.bottom_panel_iteration_notes and self.bottom_panel_iteration_notes.strip()
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data
