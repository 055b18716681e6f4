"""
Logo template library.

Builds multi-scale edge templates from a directory of reference logo images.
Each reference is orientation-normalized, trimmed of its uniform border, turned
to grayscale and resized to a fixed set of widths; every size variant keeps its
own binary edge map for sliding-window matching.
"""

import base64
import io
import logging
import os
from dataclasses import dataclass
from typing import List, Sequence, Tuple

import numpy as np
from PIL import Image, ImageChops, ImageOps

from redactor_errors import ConfigurationError

logger = logging.getLogger(__name__)

REFERENCE_EXTENSIONS = (".png", ".jpg", ".jpeg")
TEMPLATE_WIDTHS = (90, 120, 150, 190, 230)
EDGE_THRESHOLD = 22
TRIM_TOLERANCE = 10

# Variants below these limits are near-blank crops that match anything
MIN_TEMPLATE_WIDTH = 40
MIN_TEMPLATE_HEIGHT = 12
MIN_EDGE_PIXELS = 40

REFERENCE_MAX_SIZE = 512


def compute_edge_map(gray: np.ndarray, threshold: int = EDGE_THRESHOLD) -> np.ndarray:
    """
    Binary edge map of a grayscale image.

    A pixel is an edge when |I(x,y) - I(x+1,y)| + |I(x,y) - I(x,y+1)| >= threshold.
    The last row and column have no forward neighbour and are never edges.

    Args:
        gray: uint8 array of shape (height, width)
        threshold: Gradient sum needed to mark an edge

    Returns:
        uint8 array of 0/1 with the same shape as ``gray``
    """
    g = gray.astype(np.int16)
    edges = np.zeros(g.shape, dtype=np.uint8)
    if g.shape[0] < 2 or g.shape[1] < 2:
        return edges
    gx = np.abs(g[:-1, :-1] - g[:-1, 1:])
    gy = np.abs(g[:-1, :-1] - g[1:, :-1])
    edges[:-1, :-1] = (gx + gy) >= threshold
    return edges


@dataclass(frozen=True)
class Template:
    """One size variant of a reference logo."""

    ref_name: str
    width: int
    height: int
    edges: np.ndarray
    edge_count: int


@dataclass(frozen=True)
class ReferenceImage:
    """A reference logo encoded for the vision classifier."""

    name: str
    mime_type: str
    base64: str

    @property
    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.base64}"


def list_reference_files(refs_dir: str) -> List[str]:
    """Sorted PNG/JPEG files in ``refs_dir``; other extensions are ignored."""
    if not os.path.isdir(refs_dir):
        raise ConfigurationError(f"Logo reference directory not found: {refs_dir}")

    files = [
        os.path.join(refs_dir, name)
        for name in sorted(os.listdir(refs_dir))
        if name.lower().endswith(REFERENCE_EXTENSIONS)
    ]
    if not files:
        raise ConfigurationError(f"No logo references found in {refs_dir}")
    return files


def _open_oriented(path: str) -> Image.Image:
    with Image.open(path) as img:
        img.load()
        oriented = ImageOps.exif_transpose(img)
    if oriented.mode in ("RGBA", "LA", "P"):
        rgba = oriented.convert("RGBA")
        background = Image.new("RGBA", rgba.size, (255, 255, 255, 255))
        oriented = Image.alpha_composite(background, rgba)
    return oriented.convert("RGB")


def trim_uniform_border(image: Image.Image, tolerance: int = TRIM_TOLERANCE) -> Image.Image:
    """Crop away the border that matches the top-left pixel color."""
    background = Image.new(image.mode, image.size, image.getpixel((0, 0)))
    diff = ImageChops.difference(image, background).convert("L")
    mask = diff.point(lambda p: 255 if p > tolerance else 0)
    bbox = mask.getbbox()
    if bbox is None:
        return image
    return image.crop(bbox)


def _resize_to_width(image: Image.Image, target_width: int) -> Image.Image:
    height = max(1, round(image.height * target_width / image.width))
    return image.resize((target_width, height), Image.Resampling.LANCZOS)


class TemplateLibrary:
    """Read-only set of edge templates built once per job."""

    def __init__(self, templates: Sequence[Template]):
        self._templates: Tuple[Template, ...] = tuple(templates)

    def __iter__(self):
        return iter(self._templates)

    def __len__(self) -> int:
        return len(self._templates)

    @property
    def templates(self) -> Tuple[Template, ...]:
        return self._templates

    @classmethod
    def from_directory(cls, refs_dir: str, widths: Sequence[int] = TEMPLATE_WIDTHS) -> "TemplateLibrary":
        """
        Build templates for every reference image in a directory.

        Args:
            refs_dir: Directory holding PNG/JPEG reference logos
            widths: Target widths of the size variants

        Returns:
            TemplateLibrary with every usable variant

        Raises:
            ConfigurationError: if the directory is missing, holds no reference
                images, or no variant passes the size and edge-count limits
        """
        logger.info(f"Loading logo refs from {refs_dir}")
        templates: List[Template] = []

        for path in list_reference_files(refs_dir):
            ref_name = os.path.basename(path)
            try:
                base = trim_uniform_border(_open_oriented(path)).convert("L")
            except (OSError, ValueError) as e:
                logger.warning(f"Skipping unreadable logo reference {ref_name}: {e}")
                continue

            if base.width == 0 or base.height == 0:
                continue

            for target_width in widths:
                variant = _resize_to_width(base, target_width)
                w, h = variant.size
                if w < MIN_TEMPLATE_WIDTH or h < MIN_TEMPLATE_HEIGHT:
                    continue

                edges = compute_edge_map(np.asarray(variant, dtype=np.uint8))
                edge_count = int(edges.sum())
                if edge_count < MIN_EDGE_PIXELS:
                    continue

                edges.setflags(write=False)
                templates.append(Template(ref_name=ref_name, width=w, height=h, edges=edges, edge_count=edge_count))

        if not templates:
            raise ConfigurationError(f"No usable template variants could be built from {refs_dir}")

        logger.info(f"Built {len(templates)} template variants")
        return cls(templates)


def load_reference_images(refs_dir: str, max_size: int = REFERENCE_MAX_SIZE) -> List[ReferenceImage]:
    """
    Load the reference logos as base64 PNGs for the vision classifier.

    Images larger than ``max_size`` on either side are shrunk to fit; smaller
    ones are left as they are.
    """
    refs = []
    for path in list_reference_files(refs_dir):
        image = _open_oriented(path)
        image.thumbnail((max_size, max_size), Image.Resampling.LANCZOS)
        out = io.BytesIO()
        image.save(out, format="PNG")
        refs.append(
            ReferenceImage(
                name=os.path.basename(path),
                mime_type="image/png",
                base64=base64.b64encode(out.getvalue()).decode("utf-8"),
            )
        )
    logger.info(f"Loaded {len(refs)} reference images for the vision classifier")
    return refs
