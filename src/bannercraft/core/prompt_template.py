"""Panel prompt template rendering for the banner generator.

Prompt templates are stored in the database (see :mod:`bannercraft.core.database`)
and contain ``{variable}`` placeholders that are filled from the design
request before the prompt is sent to the generation API.

Placeholder Syntax
------------------
``{name}``
    Required.  Rendering fails with :class:`PromptTemplateError` when the
    context has no value (or ``None``) for ``name``.
``{name?}``
    Optional.  A missing value renders as the empty string.

Values are rendered with ``str()``, except lists (joined with ``", "``) and
booleans (``true`` / ``false``, matching how templates are written).

Variable Context
----------------
:func:`build_variable_context` produces the variables available to a panel
template::

    businessName, industryType, designText, bannerSize, preferences,
    contacts, style, colors, panel,
    logoImageUrl, headshotImageUrl, inspirationImage1Url, inspirationImage2Url

``contacts`` is scoped to the panel being rendered: a top panel only lists
contacts placed on ``top`` or ``top_bottom``.

A planned design first asks the plan model which elements each panel should
carry (:func:`build_panel_plan_prompt`).  :func:`apply_panel_plan` then adds
``includeLogo``, ``includeHeadshot``, ``useInspirationImage`` and
``contactValues`` from that panel's plan to its context.

Usage
-----
::

    context = build_variable_context(request_payload, "top")
    prompt = render_prompt_template(template.prompt_template, context)
"""

from __future__ import annotations

import json
import re
from typing import Any

from bannercraft.core.exceptions import PromptTemplateError

_PLACEHOLDER_RE = re.compile(r"\{(\w+)(\?)?\}")

# Image inputs are tagged by the client with one of these instructions; the
# matching URL is exposed to templates under the given variable name.
IMAGE_ROLE_INSTRUCTIONS: dict[str, str] = {
    "logoImageUrl": "use as main logo",
    "headshotImageUrl": "this is headshot image.",
    "inspirationImage1Url": "this is extra inspiration image 1",
    "inspirationImage2Url": "this is extra inspiration image 2",
}

_ITERATION_FOOTER = (
    "Please modify the design according to the iteration request above while "
    "maintaining the overall design principles from the original prompt."
)

_PANEL_PLAN_INSTRUCTIONS = """\
You are an assistant that processes design inputs for a dual-poster vertical banner.
Analyze the raw input and return ONLY a valid JSON object with one object for each
poster, named "top" and "bottom", specifying exactly which elements to include.

For each poster, return:
- includeLogo: true/false
- includeHeadshot: true/false (top only)
- contactValues: list of contact values (after applying the rules)
- useInspirationImage: true/false
- designText: (always included)

Rules:
- Logo: include if provided
- Headshot: include for top only, and only if present
- Contacts: include only those whose panel is "top", "bottom" or "top_bottom" and
  matches the current poster
- Inspiration images: use only on the bottom poster, and only if they exist
- Do not invent any values
"""

# Plan keys copied into a panel's template context.
PANEL_PLAN_VARIABLES: tuple[str, ...] = (
    "includeLogo",
    "includeHeadshot",
    "useInspirationImage",
    "contactValues",
)


def _render_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return ", ".join(str(item) for item in value)
    return str(value)


def render_prompt_template(template: str, context: dict[str, Any]) -> str:
    """Substitute ``{name}`` and ``{name?}`` placeholders in a template.

    Args:
        template: Template text.
        context: Variable values keyed by placeholder name.

    Returns:
        The rendered prompt.

    Raises:
        PromptTemplateError: If a required placeholder has no value.
    """

    def _replace(match: re.Match) -> str:
        key, optional = match.group(1), match.group(2)
        value = context.get(key)
        if value is None:
            if optional:
                return ""
            raise PromptTemplateError(f"Missing required value for variable: {key}", variable=key)
        return _render_value(value)

    return _PLACEHOLDER_RE.sub(_replace, template)


def template_variables(template: str) -> list[str]:
    """Return the placeholder names used in a template, in order of first use."""
    seen: list[str] = []
    for match in _PLACEHOLDER_RE.finditer(template):
        if match.group(1) not in seen:
            seen.append(match.group(1))
    return seen


def format_preferences(preferences: dict[str, Any] | None) -> str:
    """Format preferences as ``"Style: X, Colors: #a, #b"``."""
    if not preferences:
        return ""
    parts = []
    if preferences.get("style"):
        parts.append(f"Style: {preferences['style']}")
    if preferences.get("colors"):
        parts.append(f"Colors: {', '.join(preferences['colors'])}")
    return ", ".join(parts)


def on_panel(item: dict[str, Any], panel: str) -> bool:
    """Return True if an image input or contact belongs on ``panel``."""
    return item.get("panel") in (panel, "top_bottom")


def format_contacts(contacts: list[dict[str, Any]] | None, panel: str | None = None) -> str:
    """Format contacts as ``"Phone: 555 0100, Email: hi@example.com"``.

    Args:
        contacts: Contact entries with ``type``, ``value`` and ``panel`` keys.
        panel: When given, keep only contacts placed on this panel or on both.
    """
    if not contacts:
        return ""
    if panel is not None:
        contacts = [c for c in contacts if on_panel(c, panel)]
    return ", ".join(f"{c['type'][:1].upper()}{c['type'][1:]}: {c['value']}" for c in contacts)


def _find_image_url(image_inputs: list[dict[str, Any]], instruction: str) -> str | None:
    for image in image_inputs:
        text = (image.get("imageInstructionsForLlm") or "").strip().lower()
        if text == instruction:
            return image.get("url")
    return None


def build_variable_context(request: dict[str, Any], panel: str) -> dict[str, Any]:
    """Build the template variables for one panel of a design request.

    Args:
        request: Validated initial design request in its camelCase wire shape.
        panel: ``"top"`` or ``"bottom"``.

    Returns:
        Mapping of placeholder name to value.  Image URL variables are
        ``None`` when no matching image input was supplied.
    """
    preferences = request.get("preferences") or {}
    image_inputs = request.get("imageInputs") or []

    context: dict[str, Any] = {
        "businessName": request.get("businessName"),
        "industryType": request.get("industryType"),
        "designText": request.get("designText"),
        "bannerSize": request.get("bannerSize"),
        "preferences": format_preferences(preferences),
        "contacts": format_contacts(request.get("contacts"), panel),
        "style": preferences.get("style"),
        "colors": preferences.get("colors") or [],
        "panel": panel,
    }
    for variable, instruction in IMAGE_ROLE_INSTRUCTIONS.items():
        context[variable] = _find_image_url(image_inputs, instruction)
    return context


def build_iteration_prompt(original_prompt: str, iteration_notes: str) -> str:
    """Combine a panel's original prompt with the user's iteration notes.

    Args:
        original_prompt: Rendered prompt the panel was first generated with.
        iteration_notes: What the user wants changed.

    Returns:
        The notes alone when there is no original prompt, otherwise the
        original prompt followed by an ``ITERATION REQUEST:`` section.
    """
    if not original_prompt.strip():
        return iteration_notes

    return (
        f"{original_prompt.strip()}\n\n"
        f"ITERATION REQUEST:\n{iteration_notes.strip()}\n\n"
        f"{_ITERATION_FOOTER}"
    )


def build_panel_plan_prompt(request: dict[str, Any]) -> str:
    """Build the plan-model prompt that decides each panel's elements.

    Args:
        request: Validated initial design request in its camelCase wire shape.

    Returns:
        Instructions followed by the request as indented JSON.
    """
    return (
        f"{_PANEL_PLAN_INSTRUCTIONS}\n"
        f"Here is the input JSON:\n{json.dumps(request, indent=2)}\n\n"
        "Return only JSON, no extra text."
    )


def apply_panel_plan(context: dict[str, Any], panel_plan: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of ``context`` with one panel's plan values added.

    Plan keys the model left out are set to ``None``, so ``{includeHeadshot?}``
    renders empty while ``{includeHeadshot}`` fails as a missing variable.
    """
    planned = dict(context)
    for variable in PANEL_PLAN_VARIABLES:
        planned[variable] = panel_plan.get(variable)
    return planned
