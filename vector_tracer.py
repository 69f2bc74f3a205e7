"""
Vector tracing of a binary silhouette.

Boundary following and curve simplification are delegated to OpenCV
(findContours / approxPolyDP); this module only owns the tuning parameters and
the shape of the result.
"""
from dataclasses import dataclass
from typing import Tuple

import cv2
import numpy as np

from settings import TRACE_TOLERANCE, TRACE_TURD_SIZE


@dataclass(frozen=True, eq=False)
class TracedShape:
    """One filled region: an outer ring plus the rings of its holes.

    Rings are (N, 2) float arrays in pixel coordinates (x right, y down) and are
    implicitly closed (the last point connects back to the first).
    """

    exterior: np.ndarray
    holes: Tuple[np.ndarray, ...] = ()


@dataclass(frozen=True, eq=False)
class VectorOutline:
    shapes: Tuple[TracedShape, ...] = ()
    width: int = 0
    height: int = 0

    @property
    def paths(self):
        """All closed rings, each exterior followed by its holes"""
        rings = []
        for shape in self.shapes:
            rings.append(shape.exterior)
            rings.extend(shape.holes)
        return rings

    @property
    def path_count(self):
        return sum(1 + len(shape.holes) for shape in self.shapes)

    @property
    def is_empty(self):
        return not self.shapes


def _simplify(contour, tolerance):
    if tolerance > 0:
        contour = cv2.approxPolyDP(contour, tolerance, True)
    points = contour.reshape(-1, 2).astype(np.float64)
    if len(points) < 3:
        return None
    return points


def trace(raster, turd_size=TRACE_TURD_SIZE, tolerance=TRACE_TOLERANCE):
    """
    Trace the black regions of a RasterImage into closed vector rings.

    Args:
        raster: RasterImage (0 = design, 255 = background)
        turd_size: Regions and holes with a smaller area (px^2) are dropped as specks
        tolerance: approxPolyDP epsilon in pixels; 0 keeps every boundary pixel

    Returns:
        VectorOutline with shapes in the order OpenCV reports them
    """
    width, height = raster.size
    # findContours follows white regions, so the design becomes the white mask
    mask = np.where(raster.pixels == 0, 255, 0).astype(np.uint8)

    # RETR_CCOMP gives a two-level hierarchy: outer boundaries and their holes
    contours, hierarchy = cv2.findContours(mask, cv2.RETR_CCOMP, cv2.CHAIN_APPROX_NONE)
    if not contours or hierarchy is None:
        return VectorOutline(shapes=(), width=width, height=height)

    links = hierarchy[0]   # rows of [next, previous, first_child, parent]
    shapes = []
    for index, contour in enumerate(contours):
        if links[index][3] != -1:
            continue  # hole, collected with its parent
        if cv2.contourArea(contour) < turd_size:
            continue

        exterior = _simplify(contour, tolerance)
        if exterior is None:
            continue

        holes = []
        child = links[index][2]
        while child != -1:
            hole = contours[child]
            if cv2.contourArea(hole) >= turd_size:
                ring = _simplify(hole, tolerance)
                if ring is not None:
                    holes.append(ring)
            child = links[child][0]

        shapes.append(TracedShape(exterior=exterior, holes=tuple(holes)))

    return VectorOutline(shapes=tuple(shapes), width=width, height=height)
