import sys
from pathlib import Path

import fitz
import numpy as np
import pytest
from PIL import Image, ImageDraw

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from redactor_config import FormatProfile, RedactorConfig  # noqa: E402

PAGE_WIDTH = 612
PAGE_HEIGHT = 792
FOOTER_PURPLE = (110, 31, 93)


def draw_logo(size=(330, 120)) -> Image.Image:
    """A high-contrast synthetic logo on a white margin."""
    img = Image.new("RGB", size, (255, 255, 255))
    draw = ImageDraw.Draw(img)
    w, h = size
    draw.rectangle([15, 15, w - 16, h - 16], outline=(0, 0, 0), width=4)
    draw.ellipse([30, 28, 90, h - 28], fill=(20, 20, 20))
    for i, x in enumerate(range(110, w - 40, 30)):
        top = 30 if i % 2 == 0 else 45
        draw.rectangle([x, top, x + 14, h - 30], fill=(0, 0, 0))
    return img


def make_pdf(path: Path, pages: int = 1, footer_band: bool = False) -> Path:
    doc = fitz.open()
    for _ in range(pages):
        page = doc.new_page(width=PAGE_WIDTH, height=PAGE_HEIGHT)
        page.insert_text((72, 72), "Quarterly report", fontsize=18)
        if footer_band:
            rect = fitz.Rect(0, PAGE_HEIGHT - 80, PAGE_WIDTH, PAGE_HEIGHT)
            page.draw_rect(rect, color=None, fill=tuple(c / 255 for c in FOOTER_PURPLE))
    doc.save(str(path))
    doc.close()
    return path


def white_page(width=600, height=800) -> np.ndarray:
    return np.full((height, width, 3), 255, dtype=np.uint8)


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


def chat_reply(content: str) -> FakeResponse:
    return FakeResponse(200, {"choices": [{"message": {"role": "assistant", "content": content}}]})


@pytest.fixture
def logo_refs(tmp_path):
    refs = tmp_path / "logo-refs"
    refs.mkdir()
    draw_logo().save(refs / "brand.png")
    (refs / "notes.txt").write_text("not an image")
    return refs


@pytest.fixture
def banner_path(tmp_path):
    path = tmp_path / "banner.png"
    Image.new("RGB", (800, 100), (0, 160, 0)).save(path)
    return path


@pytest.fixture
def config(logo_refs, banner_path):
    profile = FormatProfile(banner_path=str(banner_path), footer_ratio=0.112, banner_fit="contain", fill_background=True)
    return RedactorConfig(
        logo_refs_dir=str(logo_refs),
        render_scale=1.2,
        openai_api_key="test-key",
        vision_api_url="https://vision.test/v1/chat/completions",
        format_profiles={
            "style_a": profile,
            "style_c": FormatProfile(banner_path=str(banner_path), footer_ratio=0.2402, banner_fit="cover", fill_background=False),
        },
    )
