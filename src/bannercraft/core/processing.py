"""Status-tracked processing of designs and design iterations.

Both entry points follow the same shape: mark the record PROCESSING, run the
generator, write the results and mark it COMPLETED.  Any failure along the
way is logged, stored on the record as FAILED with the error message, and
reported in the returned :class:`ProcessingResult` rather than raised, so
the HTTP layer can always answer with the record's final state.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass

from .database import DesignDB
from .exceptions import DesignNotFoundError, DesignStateError
from .generation import BannerGenerator
from .models import DesignStatus

logger = logging.getLogger(__name__)


@dataclass
class ProcessingResult:
    """Outcome of processing one design or iteration."""

    success: bool
    record_id: str
    status: DesignStatus
    top_panel_url: str | None = None
    bottom_panel_url: str | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["status"] = self.status.value
        return data


def process_design(
    db: DesignDB, generator: BannerGenerator, design_id: str, bucket: str = "local"
) -> ProcessingResult:
    """Generate both panels for a PENDING design.

    Args:
        db: Design database.
        generator: Panel generator.
        design_id: Design to process.
        bucket: Storage label recorded on the completed design.
    """
    logger.info("Processing design %s", design_id)
    try:
        db.update_design_status(design_id, DesignStatus.PROCESSING)
        design = db.get_design(design_id)
        if design is None:
            raise DesignNotFoundError(f"Design not found: {design_id}")

        top_url, bottom_url = generator.generate_initial_design(design)
        db.update_design_results(design_id, top_url, bottom_url, bucket)
    except Exception as e:
        logger.exception("Design %s failed", design_id)
        db.update_design_status(design_id, DesignStatus.FAILED, str(e))
        return ProcessingResult(False, design_id, DesignStatus.FAILED, error=str(e))

    logger.info("Design %s completed", design_id)
    return ProcessingResult(True, design_id, DesignStatus.COMPLETED, top_url, bottom_url)


def process_iteration(
    db: DesignDB, generator: BannerGenerator, iteration_id: str, bucket: str = "local"
) -> ProcessingResult:
    """Regenerate the requested panels for a PENDING iteration.

    Args:
        db: Design database.
        generator: Panel generator.
        iteration_id: Iteration to process.
        bucket: Storage label recorded on the completed iteration.
    """
    logger.info("Processing iteration %s", iteration_id)
    try:
        db.update_iteration_status(iteration_id, DesignStatus.PROCESSING)
        iteration = db.get_iteration(iteration_id)
        if iteration is None:
            raise DesignNotFoundError(f"Design iteration not found: {iteration_id}")

        design = db.get_design(iteration.design_id)
        if (
            design is None
            or not design.generated_top_panel_image_url
            or not design.generated_bottom_panel_image_url
        ):
            raise DesignStateError("Initial design images not found")

        top_url, bottom_url = generator.generate_design_iteration(iteration, design)
        db.update_iteration_results(iteration_id, top_url, bottom_url, bucket)
    except Exception as e:
        logger.exception("Iteration %s failed", iteration_id)
        db.update_iteration_status(iteration_id, DesignStatus.FAILED, str(e))
        return ProcessingResult(False, iteration_id, DesignStatus.FAILED, error=str(e))

    logger.info("Iteration %s completed", iteration_id)
    return ProcessingResult(True, iteration_id, DesignStatus.COMPLETED, top_url, bottom_url)
