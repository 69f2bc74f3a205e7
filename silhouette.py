"""
Raster preprocessing: generated image bytes -> fixed-size black/white silhouette.

Steps run in a fixed order (decode, letterbox to a square canvas, grayscale,
binary threshold) with fixed parameters, so identical bytes always give an
identical silhouette.
"""
import io
from dataclasses import dataclass

import cv2
import numpy as np
from PIL import Image, ImageOps

from errors import ImageProcessingError
from settings import CANVAS_FILL, CANVAS_SIZE, THRESHOLD_CUTOFF


@dataclass(frozen=True, eq=False)
class RasterImage:
    """Square uint8 image holding only 0 (design) and 255 (background)"""

    pixels: np.ndarray

    @property
    def size(self):
        return self.pixels.shape[1], self.pixels.shape[0]

    @property
    def is_blank(self):
        return not np.any(self.pixels == 0)

    def tobytes(self):
        return self.pixels.tobytes()

    def to_png(self):
        buffer = io.BytesIO()
        Image.fromarray(self.pixels).save(buffer, format='PNG')
        return buffer.getvalue()


def decode_image(data, fill=CANVAS_FILL):
    """Decode bytes to an RGB PIL image, flattening transparency onto the fill colour"""
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (OSError, ValueError, Image.DecompressionBombError) as e:
        raise ImageProcessingError("Generated image could not be decoded", details=str(e)) from e

    img = ImageOps.exif_transpose(img)
    if img.mode in ('RGBA', 'LA', 'PA') or (img.mode == 'P' and 'transparency' in img.info):
        img = img.convert('RGBA')
        background = Image.new('RGBA', img.size, tuple(fill) + (255,))
        img = Image.alpha_composite(background, img)
    return img.convert('RGB')


def preprocess(data, size=CANVAS_SIZE, fill=CANVAS_FILL, cutoff=THRESHOLD_CUTOFF):
    """
    Normalize acquired image bytes into a binary silhouette.

    Args:
        data: Encoded image bytes (PNG, JPEG, WebP...)
        size: Side of the square output canvas in pixels
        fill: RGB colour used for letterboxing and transparency
        cutoff: Gray level at or below which a pixel becomes design (black)

    Returns:
        RasterImage
    """
    img = decode_image(data, fill=fill)

    # Letterbox to a square canvas without distorting the design
    img = ImageOps.pad(img, (size, size), method=Image.Resampling.LANCZOS, color=tuple(fill))

    gray = cv2.cvtColor(np.array(img), cv2.COLOR_RGB2GRAY)
    # THRESH_BINARY: gray > cutoff -> 255 (background), else 0 (design)
    _, binary = cv2.threshold(gray, cutoff, 255, cv2.THRESH_BINARY)
    return RasterImage(pixels=np.ascontiguousarray(binary, dtype=np.uint8))
