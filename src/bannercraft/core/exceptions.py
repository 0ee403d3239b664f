"""
Custom exceptions for bannercraft.

Route handlers in ``bannercraft.api.main`` translate these into HTTP errors;
the processing layer catches them to mark records FAILED.
"""


class BannercraftError(Exception):
    """Base exception for all bannercraft errors."""

    pass


class ConfigurationError(BannercraftError):
    """Raised when there is a configuration problem (e.g. missing API key)."""

    pass


class PromptTemplateError(BannercraftError):
    """Raised when a prompt template cannot be rendered."""

    def __init__(self, message: str, variable: str = "") -> None:
        """
        Initialize template error.

        Args:
            message: Error message
            variable: Name of the placeholder that could not be filled
        """
        self.variable = variable
        super().__init__(message)


class PromptNotFoundError(BannercraftError):
    """Raised when a prompt is missing, inactive, or bound to the other panel."""

    pass


class DesignNotFoundError(BannercraftError):
    """Raised when no design or iteration exists for an id."""

    pass


class DesignStateError(BannercraftError):
    """Raised when a record is not in a state that allows the operation."""

    pass


class GenerationError(BannercraftError):
    """Raised when the external generation API fails or returns no image."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        """
        Initialize generation error.

        Args:
            message: Error message
            status_code: HTTP status code reported by the API (if any)
        """
        self.status_code = status_code
        super().__init__(message)


class ImageStoreError(BannercraftError):
    """Raised when an image payload cannot be decoded or written."""

    def __init__(self, message: str, image_path: str = "") -> None:
        """
        Initialize image store error.

        Args:
            message: Error message
            image_path: Path of the image involved (if known)
        """
        self.image_path = image_path
        super().__init__(message)
