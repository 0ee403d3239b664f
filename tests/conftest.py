"""Shared pytest fixtures for Bannercraft tests."""

import base64
import io
import shutil
import tempfile
from pathlib import Path
from types import SimpleNamespace
from typing import Generator
from unittest.mock import MagicMock

import pytest
from PIL import Image

from bannercraft.core.config import BannerConfig
from bannercraft.core.database import DesignDB
from bannercraft.core.generation import BannerGenerator
from bannercraft.core.image_store import ImageStore
from bannercraft.core.models import PanelPosition


def make_png_base64(color: str = "red", size: tuple[int, int] = (8, 4)) -> str:
    """Return a small solid-colour PNG as a base64 string."""
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return base64.b64encode(buffer.getvalue()).decode("ascii")


def make_image_response(result: str | None) -> SimpleNamespace:
    """Build a stand-in for a Responses API result carrying one image call."""
    output = []
    if result is not None:
        output.append(SimpleNamespace(type="image_generation_call", result=result))
    return SimpleNamespace(output=output, output_text="")


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files.

    Yields:
        Path to temporary directory

    Cleanup:
        Directory is removed after test completes
    """
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path) -> BannerConfig:
    """Create a test configuration with temporary directories.

    Args:
        temp_dir: Temporary directory from fixture

    Returns:
        BannerConfig instance for testing
    """
    return BannerConfig(
        _env_file=None,
        openai_api_key="test-key",
        database_path=temp_dir / "data" / "test.db",
        designs_dir=temp_dir / "designs",
        designs_url_prefix="/designs",
        storage_bucket="local",
    )


@pytest.fixture
def db(test_config: BannerConfig) -> DesignDB:
    """Fresh, empty design database."""
    return DesignDB(test_config.database_path)


@pytest.fixture
def image_store(test_config: BannerConfig) -> ImageStore:
    return ImageStore(test_config.designs_dir, test_config.designs_url_prefix)


@pytest.fixture
def png_base64() -> str:
    return make_png_base64()


@pytest.fixture
def mock_openai(png_base64: str) -> MagicMock:
    """Mock OpenAI client whose every response carries one generated image."""
    client = MagicMock()
    client.responses.create.return_value = make_image_response(png_base64)
    return client


@pytest.fixture
def generator(
    test_config: BannerConfig, image_store: ImageStore, mock_openai: MagicMock
) -> BannerGenerator:
    return BannerGenerator(test_config, image_store, client=mock_openai)


@pytest.fixture
def default_prompts(db: DesignDB):
    """Insert one default prompt per panel and return them as (top, bottom)."""
    top = db.create_prompt(
        name="Top",
        panel_position=PanelPosition.TOP,
        prompt_template="Top panel for {businessName} ({industryType}). {contacts?}",
        is_default=True,
    )
    bottom = db.create_prompt(
        name="Bottom",
        panel_position=PanelPosition.BOTTOM,
        prompt_template="Bottom panel for {businessName}: {designText}. {contacts?}",
        is_default=True,
    )
    return top, bottom


@pytest.fixture
def design_request() -> dict:
    """Valid initial design request in its camelCase wire shape."""
    return {
        "userId": 7,
        "businessName": "Acme Plumbing",
        "industryType": "Home services",
        "designText": "24/7 emergency repairs",
        "bannerSize": "1800x600",
        "preferences": {"style": "modern", "colors": ["#112233", "#AABBCC"]},
        "imageInputs": [
            {
                "url": "https://cdn.example.com/logo.png",
                "imageInstructionsForLlm": "Use as main logo",
                "panel": "top_bottom",
            },
            {
                "url": "https://cdn.example.com/inspo.jpg?v=2",
                "imageInstructionsForLlm": "This is extra inspiration image 1",
                "panel": "bottom",
            },
        ],
        "contacts": [
            {"type": "phone", "value": "555 0100", "panel": "top"},
            {"type": "email", "value": "hi@acme.test", "panel": "bottom"},
            {"type": "website", "value": "acme.test", "panel": "top_bottom"},
        ],
    }


@pytest.fixture
def completed_design(db: DesignDB, design_request: dict, image_store: ImageStore, png_base64):
    """A COMPLETED design whose panel images exist in the image store."""
    design = db.create_design(design_request, "top prompt", "bottom prompt", "t-id", "b-id")
    top_url = image_store.save_base64_image(png_base64, "top")
    bottom_url = image_store.save_base64_image(png_base64, "bottom")
    db.update_design_results(design.id, top_url, bottom_url, "local")
    return db.get_design(design.id)


@pytest.fixture
def test_client(test_config: BannerConfig, mock_openai: MagicMock, monkeypatch):
    """FastAPI TestClient wired to temporary storage and a mocked OpenAI client."""
    from fastapi.testclient import TestClient

    from bannercraft.api import main

    monkeypatch.setattr(main, "config", test_config)
    with TestClient(main.app) as client:
        main.app.state.generator = BannerGenerator(
            test_config, main.app.state.image_store, client=mock_openai
        )
        yield client


@pytest.fixture
def image_response():
    """Factory for Responses API stand-ins (see ``make_image_response``)."""
    return make_image_response


@pytest.fixture
def png_factory():
    """Factory for small base64 PNGs (see ``make_png_base64``)."""
    return make_png_base64
