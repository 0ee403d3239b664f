"""File-backed storage for generated panel images.

Generated panels arrive from the generation API as base64 PNG payloads.  The
store decodes them with Pillow (which also rejects payloads that are not
images), writes them to ``designs_dir`` and hands back the public URL the
FastAPI app serves them under::

    /designs/top-panel-4f1c....png

Stored URLs are server-relative, so the generation API cannot fetch them.
When a stored panel has to be sent back to the API as a visual reference
(iterations), :meth:`ImageStore.resolve_reference` inlines the file as a
``data:`` URL instead.
"""

from __future__ import annotations

import base64
import binascii
import io
import logging
import re
import uuid
from pathlib import Path

from PIL import Image, UnidentifiedImageError

from .exceptions import ImageStoreError

logger = logging.getLogger(__name__)

_DATA_URL_PREFIX_RE = re.compile(r"^data:image/[\w.+-]+;base64,")


def to_data_url(base64_data: str, mime_type: str = "image/png") -> str:
    """Wrap a bare base64 payload in a ``data:`` URL (no-op if already one)."""
    if base64_data.startswith("data:"):
        return base64_data
    return f"data:{mime_type};base64,{base64_data}"


class ImageStore:
    """Write generated panels to disk and map them to public URLs.

    Attributes:
        directory: Directory the PNG files live in.
        url_prefix: URL prefix the directory is served under (no trailing slash).
    """

    def __init__(self, directory: Path, url_prefix: str = "/designs") -> None:
        self.directory = Path(directory)
        self.url_prefix = url_prefix.rstrip("/")
        self.directory.mkdir(parents=True, exist_ok=True)

    def save_base64_image(self, base64_data: str, panel: str) -> str:
        """Decode a base64 image and save it as ``{panel}-panel-{uuid}.png``.

        Args:
            base64_data: Raw base64 or a ``data:image/...;base64,`` URL.
            panel: ``"top"`` or ``"bottom"``; used in the filename.

        Returns:
            Public URL of the stored file.

        Raises:
            ImageStoreError: If the payload is not a decodable image or the
                file cannot be written.
        """
        payload = _DATA_URL_PREFIX_RE.sub("", base64_data.strip())
        try:
            raw = base64.b64decode(payload, validate=True)
            image = Image.open(io.BytesIO(raw))
            image.load()
        except (binascii.Error, ValueError) as e:
            raise ImageStoreError(f"Image payload is not valid base64: {e}") from e
        except (UnidentifiedImageError, OSError) as e:
            raise ImageStoreError(f"Image payload could not be decoded: {e}") from e

        filename = f"{panel}-panel-{uuid.uuid4()}.png"
        filepath = self.directory / filename
        try:
            image.save(filepath, format="PNG")
        except OSError as e:
            raise ImageStoreError(f"Failed to write image: {e}", image_path=str(filepath)) from e

        logger.info(
            "Stored %s panel %s (%dx%d, %d bytes)",
            panel,
            filename,
            image.width,
            image.height,
            filepath.stat().st_size,
        )
        return f"{self.url_prefix}/{filename}"

    def path_for(self, url: str | None) -> Path | None:
        """Map a store URL back to its file path, or None if it is not a store URL."""
        if not url or not url.startswith(self.url_prefix + "/"):
            return None
        filename = url[len(self.url_prefix) + 1 :]
        # Reject anything that is not a plain filename inside the store.
        if not filename or "/" in filename or "\\" in filename or filename in (".", ".."):
            return None
        return self.directory / filename

    def resolve_reference(self, url: str) -> str:
        """Return a URL the generation API can read for a stored panel.

        Store URLs whose file exists are inlined as PNG ``data:`` URLs; every
        other URL (remote http(s), existing data URLs) is returned unchanged.
        """
        path = self.path_for(url)
        if path is None or not path.is_file():
            return url
        encoded = base64.b64encode(path.read_bytes()).decode("ascii")
        return to_data_url(encoded)
