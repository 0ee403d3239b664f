"""Two-panel banner generation against the OpenAI Responses API.

This module provides :class:`BannerGenerator`, the single point of contact
with the external generation API.  Each panel is produced by one
``responses.create`` call with the ``image_generation`` tool enabled: the
rendered panel prompt is sent as the system message and the visual inputs
(logos, headshots, inspiration images, reference panels) as user content.

Panel Consistency
-----------------
The two panels are generated by separate model calls, so the bottom panel is
always given a top panel as a visual reference:

- **Initial design**: the top panel is generated first; the freshly
  generated top image is then placed at the head of the bottom panel's
  content, after an instruction to stay consistent with it.
- **Iteration**: only panels with iteration notes are regenerated.  Each
  regenerated panel receives its current image plus a "modify this existing
  design" instruction.  A regenerated bottom panel also receives the
  *updated* top panel when the top was regenerated in the same iteration,
  and the *current* top panel otherwise.

Usage
-----
::

    from bannercraft.core.config import config
    from bannercraft.core.generation import BannerGenerator
    from bannercraft.core.image_store import ImageStore

    store = ImageStore(config.designs_dir, config.designs_url_prefix)
    generator = BannerGenerator(config, store)
    top_url, bottom_url = generator.generate_initial_design(design)

See Also
--------
- :mod:`bannercraft.core.processing`: status transitions around these calls.
- :mod:`bannercraft.core.prompt_template`: how panel prompts are rendered.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

import openai

from bannercraft.core.config import BannerConfig
from bannercraft.core.exceptions import ConfigurationError, DesignStateError, GenerationError
from bannercraft.core.image_store import ImageStore, to_data_url
from bannercraft.core.models import Design, DesignIteration
from bannercraft.core.prompt_template import build_iteration_prompt, on_panel

logger = logging.getLogger(__name__)

TOP_PANEL_REFERENCE_TEXT = (
    "This is the top panel image, pay particular attention to its design and make "
    "sure that your design is consistent with it."
)
UPDATED_TOP_PANEL_REFERENCE_TEXT = (
    "This is the updated top panel image, ensure your bottom panel design is "
    "consistent with it."
)
CURRENT_TOP_PANEL_REFERENCE_TEXT = (
    "This is the current top panel image, ensure your bottom panel design remains "
    "consistent with it."
)
MODIFY_EXISTING_TEXT = "Please modify this existing design based on the iteration request."

_CODE_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def input_text(text: str) -> dict[str, Any]:
    return {"type": "input_text", "text": text}


def input_image(image_url: str) -> dict[str, Any]:
    return {"type": "input_image", "image_url": image_url, "detail": "high"}


def filter_by_panel(items: list[dict[str, Any]] | None, panel: str) -> list[dict[str, Any]]:
    """Keep image inputs or contacts placed on ``panel`` or on both panels."""
    if not items or not isinstance(items, list):
        return []
    return [item for item in items if on_panel(item, panel)]


def build_image_input_content(images: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Turn image inputs into Responses API content items.

    Each image becomes an ``input_image`` item, followed by an
    ``input_text`` item carrying its instructions when it has any.
    """
    content: list[dict[str, Any]] = []
    for image in images:
        content.append(input_image(image["url"]))
        if image.get("imageInstructionsForLlm"):
            content.append(input_text(f"Image instructions: {image['imageInstructionsForLlm']}"))
    return content


class BannerGenerator:
    """Generates banner panels and JSON plans through the OpenAI Responses API.

    The API client is created lazily on the first call, so a missing API key
    only surfaces when generation is actually attempted.

    Attributes:
        _config (BannerConfig):
            Application configuration: models, API key, timeout.
        _store (ImageStore):
            Where generated panels are written.
        _client:
            The ``openai.OpenAI`` client, or ``None`` until first use.
    """

    def __init__(
        self,
        config: BannerConfig,
        store: ImageStore,
        client: openai.OpenAI | None = None,
    ) -> None:
        self._config = config
        self._store = store
        self._client = client

    @property
    def client(self) -> openai.OpenAI:
        if self._client is None:
            if not self._config.openai_api_key:
                raise ConfigurationError(
                    "OpenAI API key is required. Set BANNERCRAFT_OPENAI_API_KEY."
                )
            self._client = openai.OpenAI(
                api_key=self._config.openai_api_key,
                base_url=self._config.openai_base_url,
                timeout=self._config.request_timeout,
            )
            logger.info("OpenAI client initialised (model=%s).", self._config.vision_model)
        return self._client

    # -- Single panel -------------------------------------------------------

    def generate_panel_image(self, prompt: str, content: list[dict[str, Any]]) -> str:
        """Generate one panel image.

        Args:
            prompt: Rendered panel prompt, sent as the system message.
            content: User content items (text instructions and reference images).

        Returns:
            The generated image as a base64 PNG string.

        Raises:
            GenerationError: If the API call fails or returns no image.
        """
        logger.info(
            "Generating panel (prompt length=%d, content items=%d).", len(prompt), len(content)
        )
        try:
            response = self.client.responses.create(
                model=self._config.vision_model,
                input=[
                    {"role": "system", "content": prompt},
                    {"role": "user", "content": content},
                ],
                tools=[{"type": "image_generation"}],
            )
        except openai.APIStatusError as e:
            raise GenerationError(
                f"Panel generation failed: {e.message}", status_code=e.status_code
            ) from e
        except openai.OpenAIError as e:
            raise GenerationError(f"Panel generation failed: {e}") from e

        image = next(
            (
                item.result
                for item in response.output
                if getattr(item, "type", None) == "image_generation_call"
                and getattr(item, "result", None)
            ),
            None,
        )
        if not image:
            raise GenerationError("Panel generation failed: No image was generated")

        logger.info("Panel generated (base64 length=%d).", len(image))
        return image

    # -- Initial design -----------------------------------------------------

    def generate_initial_design(self, design: Design) -> tuple[str, str]:
        """Generate both panels of a new design and store them.

        Args:
            design: Design record with rendered top and bottom prompts.

        Returns:
            Tuple of ``(top_panel_url, bottom_panel_url)`` store URLs.
        """
        if not design.top_panel_prompt or not design.bottom_panel_prompt:
            raise DesignStateError(f"Design {design.id} is missing its panel prompts")

        top_images = filter_by_panel(design.image_inputs, "top")
        bottom_images = filter_by_panel(design.image_inputs, "bottom")
        logger.info(
            "Generating design %s (top images=%d, bottom images=%d).",
            design.id,
            len(top_images),
            len(bottom_images),
        )

        top_base64 = self.generate_panel_image(
            design.top_panel_prompt, build_image_input_content(top_images)
        )

        bottom_content = [
            input_text(TOP_PANEL_REFERENCE_TEXT),
            input_image(to_data_url(top_base64)),
            *build_image_input_content(bottom_images),
        ]
        bottom_base64 = self.generate_panel_image(design.bottom_panel_prompt, bottom_content)

        top_url = self._store.save_base64_image(top_base64, "top")
        bottom_url = self._store.save_base64_image(bottom_base64, "bottom")
        return top_url, bottom_url

    # -- Iterations ---------------------------------------------------------

    def generate_design_iteration(
        self, iteration: DesignIteration, design: Design
    ) -> tuple[str | None, str | None]:
        """Regenerate the panels an iteration has notes for.

        Args:
            iteration: The iteration record (notes and original prompts).
            design: The parent design (current panel images and image inputs).

        Returns:
            Tuple of ``(top_panel_url, bottom_panel_url)``; a panel that was
            not regenerated is ``None``.

        Raises:
            DesignStateError: If no panel has notes, or a panel to regenerate
                has no current image.
        """
        regenerate_top = iteration.regenerates_top()
        regenerate_bottom = iteration.regenerates_bottom()
        logger.info(
            "Generating iteration %s of design %s (top=%s, bottom=%s).",
            iteration.id,
            design.id,
            regenerate_top,
            regenerate_bottom,
        )
        if not regenerate_top and not regenerate_bottom:
            raise DesignStateError("No iteration notes provided for any panel")

        current_top = design.generated_top_panel_image_url
        current_bottom = design.generated_bottom_panel_image_url
        if regenerate_top and not current_top:
            raise DesignStateError("Cannot iterate top panel: no existing top panel image found")
        if regenerate_bottom and not current_bottom:
            raise DesignStateError(
                "Cannot iterate bottom panel: no existing bottom panel image found"
            )

        new_top_base64: str | None = None
        new_bottom_base64: str | None = None

        if regenerate_top:
            prompt = build_iteration_prompt(
                iteration.original_top_panel_prompt or "",
                iteration.top_panel_iteration_notes or "",
            )
            content = [
                input_text(MODIFY_EXISTING_TEXT),
                input_image(self._store.resolve_reference(current_top)),
                *build_image_input_content(filter_by_panel(design.image_inputs, "top")),
            ]
            new_top_base64 = self.generate_panel_image(prompt, content)

        if regenerate_bottom:
            prompt = build_iteration_prompt(
                iteration.original_bottom_panel_prompt or "",
                iteration.bottom_panel_iteration_notes or "",
            )
            content = [
                input_text(MODIFY_EXISTING_TEXT),
                input_image(self._store.resolve_reference(current_bottom)),
            ]
            if new_top_base64:
                content.append(input_text(UPDATED_TOP_PANEL_REFERENCE_TEXT))
                content.append(input_image(to_data_url(new_top_base64)))
            elif current_top:
                content.append(input_text(CURRENT_TOP_PANEL_REFERENCE_TEXT))
                content.append(input_image(self._store.resolve_reference(current_top)))
            content.extend(build_image_input_content(filter_by_panel(design.image_inputs, "bottom")))

            new_bottom_base64 = self.generate_panel_image(prompt, content)

        # Nothing is stored until every requested panel has been generated.
        top_url = self._store.save_base64_image(new_top_base64, "top") if new_top_base64 else None
        bottom_url = (
            self._store.save_base64_image(new_bottom_base64, "bottom")
            if new_bottom_base64
            else None
        )
        return top_url, bottom_url

    # -- JSON plans ---------------------------------------------------------

    def generate_json_plan(self, prompt: str) -> Any:
        """Ask the plan model for a JSON document and parse it.

        Markdown code fences around the JSON are tolerated.

        Raises:
            GenerationError: If the API call fails or the output is not JSON.
        """
        try:
            response = self.client.responses.create(model=self._config.plan_model, input=prompt)
        except openai.APIStatusError as e:
            raise GenerationError(
                f"JSON plan generation failed: {e.message}", status_code=e.status_code
            ) from e
        except openai.OpenAIError as e:
            raise GenerationError(f"JSON plan generation failed: {e}") from e

        text = _CODE_FENCE_RE.sub("", (response.output_text or "").strip())
        try:
            return json.loads(text)
        except ValueError as e:
            raise GenerationError(f"JSON plan generation returned invalid JSON: {e}") from e
