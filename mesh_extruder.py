"""
Extrude a traced VectorOutline into a bevelled, centered 3D mesh.

Each traced shape becomes a solid: a stack of offset copies of its rings (front
bevel, straight wall, back bevel) stitched together with quads, closed by
triangulated caps. All shapes are combined into one trimesh mesh, centered on
the origin and given a single metallic PBR material.
"""
from dataclasses import dataclass
from typing import Tuple

import numpy as np
import shapely
import trimesh
from shapely.geometry import Polygon

from console import log_info, log_warning
from settings import (
    BEVEL_SEGMENTS, BEVEL_SIZE, BEVEL_THICKNESS, EXTRUDE_DEPTH, METAL_COLORS,
    METALNESS, MODEL_WIDTH_MM, ROUGHNESS,
)

# Offsets at very sharp corners are capped at 1 / MITER_LIMIT times the bevel size
MITER_LIMIT = 0.25


@dataclass(frozen=True)
class BevelSpec:
    enabled: bool = True
    thickness: float = BEVEL_THICKNESS
    size: float = BEVEL_SIZE
    segments: int = BEVEL_SEGMENTS


@dataclass(frozen=True)
class MetalMaterial:
    base_color: Tuple[float, float, float, float] = METAL_COLORS['gold']
    metallic: float = METALNESS
    roughness: float = ROUGHNESS
    name: str = 'metal'

    @classmethod
    def for_finish(cls, finish):
        """Pick a base colour from a free-text finish ('antique silver', 'Gold'...)"""
        text = (finish or '').lower()
        for metal, color in METAL_COLORS.items():
            if metal in text:
                return cls(base_color=color, name=metal)
        return cls()

    def to_pbr(self):
        return trimesh.visual.material.PBRMaterial(
            name=self.name,
            baseColorFactor=list(self.base_color),
            metallicFactor=float(self.metallic),
            roughnessFactor=float(self.roughness),
        )


@dataclass(eq=False)
class CoinMesh:
    """Combined extruded geometry plus the one material applied to all of it"""

    mesh: trimesh.Trimesh
    material: MetalMaterial

    @property
    def is_empty(self):
        return len(self.mesh.faces) == 0

    @property
    def vertices(self):
        return self.mesh.vertices

    @property
    def faces(self):
        return self.mesh.faces

    @property
    def bounds(self):
        if self.is_empty:
            return np.zeros((2, 3))
        return self.mesh.bounds

    @property
    def center(self):
        return self.bounds.mean(axis=0)


def bevel_profile(depth, bevel):
    """
    (z, offset) pairs from the front cap to the back cap.

    The bevel follows a quarter circle: the front cap sits at z = -thickness with
    no offset, the walls run from z = 0 to z = depth offset by the full bevel
    size, and the back bevel mirrors the front one.
    """
    if not bevel.enabled or bevel.segments < 1 or (bevel.thickness <= 0 and bevel.size <= 0):
        return [(0.0, 0.0), (float(depth), 0.0)]

    front = []
    for step in range(bevel.segments + 1):
        angle = step / bevel.segments * np.pi / 2
        front.append((-bevel.thickness * np.cos(angle), bevel.size * np.sin(angle)))
    back = [(depth - z, offset) for z, offset in reversed(front)]
    return front + back


def signed_area(ring):
    x, y = ring[:, 0], ring[:, 1]
    return 0.5 * float(np.dot(x, np.roll(y, -1)) - np.dot(y, np.roll(x, -1)))


def orient(ring, ccw=True):
    """Return the ring wound counter-clockwise (exteriors) or clockwise (holes)"""
    if (signed_area(ring) > 0) != ccw:
        return ring[::-1].copy()
    return ring


def offset_directions(ring):
    """
    Per-vertex miter vectors pointing away from the solid.

    Exteriors must be CCW and holes CW; then the right-hand normal of every edge
    faces out of the material for both.
    """
    edges = np.roll(ring, -1, axis=0) - ring
    lengths = np.linalg.norm(edges, axis=1)
    lengths[lengths == 0] = 1.0
    normals = np.column_stack((edges[:, 1], -edges[:, 0])) / lengths[:, None]

    previous = np.roll(normals, 1, axis=0)
    miter = normals + previous
    miter_length = np.linalg.norm(miter, axis=1)
    # 180 degree turns cancel out, fall back to the outgoing edge normal
    spikes = miter_length < 1e-9
    miter[spikes] = normals[spikes]
    miter_length[spikes] = 1.0
    miter = miter / miter_length[:, None]

    cos_half = np.einsum('ij,ij->i', miter, normals)
    scale = 1.0 / np.maximum(cos_half, MITER_LIMIT)
    return miter * scale[:, None]


def _cap(polygon, z, facing_up):
    """Triangulate a cap polygon at height z, wound to face +z or -z"""
    if not polygon.is_valid:
        polygon = polygon.buffer(0)
    if polygon.is_empty:
        return np.zeros((0, 3)), np.zeros((0, 3), dtype=np.int64)

    triangles = shapely.constrained_delaunay_triangles(polygon)
    corners = [np.asarray(triangle.exterior.coords)[:3] for triangle in triangles.geoms
               if triangle.geom_type == 'Polygon']
    if not corners:
        return np.zeros((0, 3)), np.zeros((0, 3), dtype=np.int64)

    corners = np.array(corners)                      # (T, 3, 2)
    a, b, c = corners[:, 0], corners[:, 1], corners[:, 2]
    cross = (b[:, 0] - a[:, 0]) * (c[:, 1] - a[:, 1]) - (b[:, 1] - a[:, 1]) * (c[:, 0] - a[:, 0])
    flip = cross < 0 if facing_up else cross > 0
    corners[flip] = corners[flip][:, ::-1]

    vertices = np.concatenate([corners.reshape(-1, 2), np.full((len(corners) * 3, 1), z)], axis=1)
    faces = np.arange(len(vertices), dtype=np.int64).reshape(-1, 3)
    return vertices, faces


def extrude_shape(exterior, holes, depth, bevel):
    """
    Build one watertight-looking solid for a shape given in model units (y up).

    Returns:
        trimesh.Trimesh, or None when the shape is degenerate
    """
    if len(exterior) < 3 or abs(signed_area(exterior)) < 1e-12:
        return None

    rings = [orient(exterior, ccw=True)]
    rings += [orient(hole, ccw=False) for hole in holes if len(hole) >= 3]
    directions = [offset_directions(ring) for ring in rings]
    profile = bevel_profile(depth, bevel)
    layer_count = len(profile)

    vertex_blocks = []
    face_blocks = []
    base = 0

    # Side walls: one vertex ring per profile layer, consecutive layers joined by quads
    for ring, direction in zip(rings, directions):
        count = len(ring)
        layers = [np.column_stack((ring + direction * offset, np.full(count, z))) for z, offset in profile]
        vertex_blocks.append(np.concatenate(layers))

        i = np.arange(count)
        j = (i + 1) % count
        for layer in range(layer_count - 1):
            lower = base + layer * count
            upper = lower + count
            face_blocks.append(np.column_stack((lower + i, lower + j, upper + j)))
            face_blocks.append(np.column_stack((lower + i, upper + j, upper + i)))
        base += count * layer_count

    # Caps at the outermost layers
    for (z, offset), facing_up in ((profile[0], False), (profile[-1], True)):
        shells = [ring + direction * offset for ring, direction in zip(rings, directions)]
        cap_vertices, cap_faces = _cap(Polygon(shells[0], shells[1:]), z, facing_up)
        if len(cap_faces):
            vertex_blocks.append(cap_vertices)
            face_blocks.append(cap_faces + base)
            base += len(cap_vertices)

    vertices = np.concatenate(vertex_blocks)
    faces = np.concatenate(face_blocks)
    # process=True welds the cap vertices onto the wall rings they coincide with
    return trimesh.Trimesh(vertices=vertices, faces=faces, process=True)


def extrude(outline, depth=EXTRUDE_DEPTH, bevel=None, units_per_pixel=None, material=None):
    """
    Extrude every traced shape and combine them into one centered CoinMesh.

    Args:
        outline: VectorOutline in pixel coordinates
        depth: Wall height between the bevels, in model units
        bevel: BevelSpec (defaults to the fixed coin bevel)
        units_per_pixel: Model units per pixel; defaults to MODEL_WIDTH_MM across the canvas
        material: MetalMaterial applied to the whole mesh

    Returns:
        CoinMesh; empty (no faces) when the outline has no shapes
    """
    bevel = bevel or BevelSpec()
    material = material or MetalMaterial()
    if units_per_pixel is None:
        units_per_pixel = MODEL_WIDTH_MM / outline.width if outline.width else 1.0

    # Image rows grow downwards; flip to y-up while scaling
    to_model = np.array([units_per_pixel, -units_per_pixel])

    parts = []
    for index, shape in enumerate(outline.shapes):
        solid = extrude_shape(
            shape.exterior * to_model,
            [hole * to_model for hole in shape.holes],
            depth,
            bevel,
        )
        if solid is None:
            log_warning(f"Skipping degenerate shape {index}")
            continue
        parts.append(solid)

    if not parts:
        log_info("Outline has no shapes, returning empty mesh")
        mesh = trimesh.Trimesh(vertices=np.zeros((0, 3)), faces=np.zeros((0, 3), dtype=np.int64))
    else:
        mesh = trimesh.util.concatenate(parts)
        # Re-center on the bounding box centre
        mesh.apply_translation(-mesh.bounds.mean(axis=0))
        log_info(f"Extruded {len(parts)} shape(s): {len(mesh.vertices)} vertices, {len(mesh.faces)} faces")

    mesh.visual = trimesh.visual.TextureVisuals(material=material.to_pbr())
    return CoinMesh(mesh=mesh, material=material)
