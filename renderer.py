import io
import logging
import pathlib
from typing import Callable, Dict

import numpy as np

from config import DEFAULT_BLEND
from exceptions import DependencyUnavailable

logger = logging.getLogger(__name__)


def _colour_burn(backdrop: np.ndarray, source: np.ndarray) -> np.ndarray:
    with np.errstate(divide="ignore", invalid="ignore"):
        burnt = 1.0 - np.minimum(1.0, (1.0 - backdrop) / source)
    burnt = np.where(source <= 0.0, 0.0, burnt)
    return np.where(backdrop >= 1.0, 1.0, burnt)


# Blend functions on [0, 1] colour channels, Pillow has no colour burn
BLEND_FUNCTIONS: Dict[str, Callable[[np.ndarray, np.ndarray], np.ndarray]] = {
    "colour-burn": _colour_burn,
    "color-burn": _colour_burn,
}


class Renderer:
    """Load, composite and encode trait images."""

    available = True

    def load(self, path: pathlib.Path):
        raise NotImplementedError

    def composite(self, base, layer, blend: str = DEFAULT_BLEND):
        raise NotImplementedError

    def encode(self, image) -> bytes:
        raise NotImplementedError


class NullRenderer(Renderer):
    """Stand-in used when no compositing library is installed."""

    available = False

    def load(self, path):
        raise DependencyUnavailable("No compositing library available")

    def composite(self, base, layer, blend=DEFAULT_BLEND):
        raise DependencyUnavailable("No compositing library available")

    def encode(self, image):
        raise DependencyUnavailable("No compositing library available")


class PillowRenderer(Renderer):
    """Pillow compositing, colour burn computed with numpy."""

    def __init__(self):
        from PIL import Image

        self._image = Image

    def load(self, path: pathlib.Path):
        """Open and fully decode an image as RGBA.

        Raises whatever Pillow raises for unreadable files (``OSError`` or
        ``ValueError``), the engine maps those to ``AssetDecodeError``.
        """
        with self._image.open(path) as img:
            return img.convert("RGBA")

    def composite(self, base, layer, blend: str = DEFAULT_BLEND):
        """Stack ``layer`` over ``base`` at offset (0, 0).

        Args:
            base: RGBA canvas
            layer: RGBA image, placed on a transparent canvas if sizes differ
            blend: "normal" for plain alpha over, else a key of BLEND_FUNCTIONS

        Returns:
            New RGBA image the size of ``base``
        """
        if blend != DEFAULT_BLEND and blend not in BLEND_FUNCTIONS:
            raise ValueError(f"Unknown blend mode: {blend}")

        if layer.size != base.size:
            canvas = self._image.new("RGBA", base.size, (0, 0, 0, 0))
            canvas.paste(layer, (0, 0))
            layer = canvas

        if blend == DEFAULT_BLEND:
            return self._image.alpha_composite(base, layer)

        backdrop = np.asarray(base, dtype=np.float64) / 255.0
        source = np.asarray(layer, dtype=np.float64) / 255.0
        backdrop_alpha = backdrop[..., 3:4]

        blended = BLEND_FUNCTIONS[blend](backdrop[..., :3], source[..., :3])
        # Where the backdrop is transparent the source colour shows unblended
        mixed = (1.0 - backdrop_alpha) * source[..., :3] + backdrop_alpha * blended

        source_pixels = np.concatenate([mixed, source[..., 3:4]], axis=-1)
        source_pixels = np.clip(np.rint(source_pixels * 255.0), 0, 255).astype(np.uint8)
        return self._image.alpha_composite(
            base, self._image.fromarray(source_pixels)
        )

    def encode(self, image) -> bytes:
        buffer = io.BytesIO()
        image.save(buffer, format="PNG")
        return buffer.getvalue()


def load_renderer() -> Renderer:
    """Build the process-wide renderer, falling back to NullRenderer."""
    try:
        return PillowRenderer()
    except ImportError:
        logger.warning("Pillow is not installed, avatar generation disabled")
        return NullRenderer()
