"""Core functionality for banner generation.

- **config**: Environment-based settings (``BANNERCRAFT_`` prefix)
- **models**: Persisted record types and status enums
- **database**: SQLite persistence for prompts, designs and iterations
- **prompt_template**: ``{variable}`` / ``{variable?}`` template rendering
- **generation**: Panel generation through the OpenAI Responses API
- **image_store**: On-disk storage of generated panels
- **processing**: Status-tracked orchestration of generation runs
"""

from bannercraft.core.config import BannerConfig, config
from bannercraft.core.models import Design, DesignIteration, DesignStatus, PanelPosition, Prompt

__all__ = [
    "BannerConfig",
    "config",
    "Design",
    "DesignIteration",
    "DesignStatus",
    "PanelPosition",
    "Prompt",
]
