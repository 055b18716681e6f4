import numpy as np
from PIL import Image

from conftest import white_page
from footer_band import SearchZone
from logo_detectors import TemplateMatchDetector
from logo_templates import Template, TemplateLibrary, trim_uniform_border
from page_raster import bitmap_from_array
from pdf_geometry import PixelBox
from template_matcher import NO_MATCH, is_bbox_plausible, match_templates


def make_template(width=60, height=30, seed=0, name="synthetic.png"):
    rng = np.random.default_rng(seed)
    edges = (rng.random((height, width)) < 0.3).astype(np.uint8)
    return Template(ref_name=name, width=width, height=height, edges=edges, edge_count=int(edges.sum()))


def test_exact_copy_on_grid_scores_one():
    template = make_template()
    page = np.zeros((800, 600), dtype=np.uint8)
    # default zone starts at (270, 480); both offsets are multiples of the step
    page[540:570, 300:360] = template.edges

    result = match_templates(page, [template])
    assert result.score == 1.0
    assert result.bbox_px == PixelBox(x=300, y=540, width=60, height=30)
    assert result.matched_reference == "synthetic.png"


def test_partial_match_score_equals_exact_count_formula():
    template = make_template(seed=3)
    window = template.edges.copy()
    on = np.argwhere(window == 1)
    off = np.argwhere(window == 0)
    for y, x in on[:3]:
        window[y, x] = 0
    for y, x in off[:5]:
        window[y, x] = 1
    page = np.zeros((800, 600), dtype=np.uint8)
    page[540:570, 300:360] = window

    tp = template.edge_count - 3
    expected = tp / (tp + 0.65 * 5 + 1.25 * 3)
    result = match_templates(page, [template])
    assert result.bbox_px == PixelBox(x=300, y=540, width=60, height=30)
    assert result.score == expected


def test_empty_page_is_no_match():
    result = match_templates(np.zeros((800, 600), dtype=np.uint8), [make_template()])
    assert result == NO_MATCH
    assert result.bbox_px is None


def test_template_larger_than_zone_is_skipped():
    template = make_template(width=60, height=30)
    zone = SearchZone(x0=0, y0=0, x1=50, y1=50)
    assert match_templates(np.ones((100, 100), dtype=np.uint8), [template], zone) == NO_MATCH


def test_earlier_template_wins_ties():
    first = make_template(name="a.png")
    second = Template(ref_name="b.png", width=60, height=30, edges=first.edges, edge_count=first.edge_count)
    page = np.zeros((800, 600), dtype=np.uint8)
    page[540:570, 300:360] = first.edges
    assert match_templates(page, [first, second]).matched_reference == "a.png"


def test_match_respects_zone():
    template = make_template()
    page = np.zeros((800, 600), dtype=np.uint8)
    page[540:570, 300:360] = template.edges
    zone = SearchZone(x0=0, y0=0, x1=600, y1=300)
    assert match_templates(page, [template], zone).score == 0.0


def test_plausibility_gate():
    assert is_bbox_plausible(PixelBox(0, 0, 100, 40), 600, 800)
    assert not is_bbox_plausible(None, 600, 800)
    assert not is_bbox_plausible(PixelBox(0, 0, 20, 40), 600, 800)  # too narrow
    assert not is_bbox_plausible(PixelBox(0, 0, 300, 40), 600, 800)  # too wide
    assert not is_bbox_plausible(PixelBox(0, 0, 100, 5), 600, 800)  # too short
    assert not is_bbox_plausible(PixelBox(0, 0, 100, 200), 600, 800)  # too tall


def test_detector_finds_logo_rendered_into_footer(logo_refs):
    library = TemplateLibrary.from_directory(str(logo_refs))
    base = trim_uniform_border(Image.open(logo_refs / "brand.png").convert("RGB")).convert("L")
    height = max(1, round(base.height * 150 / base.width))
    logo = np.asarray(base.resize((150, height), Image.Resampling.LANCZOS), dtype=np.uint8)

    pixels = white_page(734, 950)
    # default zone origin is (330, 570); place the logo on the step grid
    x, y = 330 + 3 * 50, 570 + 3 * 80
    pixels[y : y + height, x : x + 150] = logo[:, :, np.newaxis]

    detection = TemplateMatchDetector(library).detect(bitmap_from_array(pixels, scale=1.2))
    assert detection.footer_zone is None
    assert detection.match.score > 0.8
    assert detection.match.bbox_px == PixelBox(x=x, y=y, width=150, height=height)
    assert detection.match.matched_reference == "brand.png"
    assert detection.plausible
