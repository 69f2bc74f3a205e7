"""
Model export (GLB / STL) and short-lived storage for downloadable artifacts
"""
import base64
import contextlib
import io
import os
import threading
import time
import uuid
from dataclasses import dataclass

import numpy as np
import trimesh
from stl import Mode, mesh as stl_mesh

from console import log_info, log_warning
from errors import ModelExportError

CONTENT_TYPES = {
    'glb': 'model/gltf-binary',
    'stl': 'model/stl',
}

# Preview-only lighting, written with the KHR_lights_punctual glTF extension
PREVIEW_LIGHTS = [
    ({'type': 'directional', 'color': [1.0, 1.0, 1.0], 'intensity': 3.0}, [0.0, 0.0, 60.0]),
    ({'type': 'point', 'color': [1.0, 0.95, 0.85], 'intensity': 40.0}, [40.0, 40.0, 40.0]),
]


@dataclass(frozen=True, eq=False)
class ModelArtifact:
    format: str
    data: bytes
    empty: bool = False

    @property
    def filename(self):
        return f"coin.{self.format}"

    @property
    def content_type(self):
        return CONTENT_TYPES[self.format]

    def to_base64(self):
        return base64.b64encode(self.data).decode('ascii')


def _add_preview_lights(tree):
    """Append light nodes to an exported glTF tree; geometry is untouched"""
    tree.setdefault('extensions', {})['KHR_lights_punctual'] = {
        'lights': [light for light, _ in PREVIEW_LIGHTS],
    }
    used = tree.setdefault('extensionsUsed', [])
    if 'KHR_lights_punctual' not in used:
        used.append('KHR_lights_punctual')

    nodes = tree.setdefault('nodes', [])
    roots = tree['scenes'][0].setdefault('nodes', [])
    for index, (_, translation) in enumerate(PREVIEW_LIGHTS):
        nodes.append({
            'name': f"preview_light_{index}",
            'translation': translation,
            'extensions': {'KHR_lights_punctual': {'light': index}},
        })
        roots.append(len(nodes) - 1)


def export_glb(coin_mesh, lights=False):
    scene = trimesh.Scene()
    scene.add_geometry(coin_mesh.mesh, node_name='coin', geom_name='coin')
    postprocessor = _add_preview_lights if lights else None
    return trimesh.exchange.gltf.export_glb(scene, tree_postprocessor=postprocessor)


def export_stl(coin_mesh):
    """Binary STL via numpy-stl (geometry only, STL has no materials)"""
    triangles = np.asarray(coin_mesh.mesh.triangles, dtype=np.float32).reshape(-1, 3, 3)
    solid = stl_mesh.Mesh(np.zeros(len(triangles), dtype=stl_mesh.Mesh.dtype))
    if len(triangles):
        solid.vectors[:] = triangles
    buffer = io.BytesIO()
    solid.save('coin.stl', fh=buffer, mode=Mode.BINARY)
    return buffer.getvalue()


def export_model(coin_mesh, fmt='glb', lights=False):
    """
    Serialize a CoinMesh to a binary interchange format.

    Args:
        coin_mesh: CoinMesh (may be empty)
        fmt: 'glb' or 'stl'
        lights: Add preview light nodes to GLB output

    Returns:
        ModelArtifact

    Raises:
        ModelExportError if serialization fails; no partial output is returned
    """
    if fmt not in CONTENT_TYPES:
        raise ModelExportError(details=f"Unsupported model format: {fmt}")

    try:
        if fmt == 'glb':
            data = export_glb(coin_mesh, lights=lights)
        else:
            data = export_stl(coin_mesh)
    except Exception as e:
        raise ModelExportError(details=f"{type(e).__name__}: {e}") from e

    log_info(f"Exported {fmt.upper()} model ({len(data)} bytes, empty={coin_mesh.is_empty})")
    return ModelArtifact(format=fmt, data=data, empty=coin_mesh.is_empty)


class ArtifactScope:
    """Tokens saved on behalf of one request"""

    def __init__(self, store):
        self.store = store
        self.tokens = []
        self._lock = threading.Lock()

    def save(self, artifact):
        token = self.store.save(artifact)
        with self._lock:
            self.tokens.append(token)
        return token

    def discard_all(self):
        with self._lock:
            tokens, self.tokens = self.tokens, []
        for token in tokens:
            self.store.discard(token)
        return len(tokens)


class TempArtifactStore:
    """
    Transient on-disk storage for models served by download URL.

    Files are removed when downloaded, when the request that produced them
    fails (see ``scoped``), or once older than ``max_age`` seconds.
    """

    def __init__(self, root, max_age=900.0):
        self.root = root
        self.max_age = max_age
        self._lock = threading.Lock()
        os.makedirs(self.root, exist_ok=True)

    def _path(self, token, fmt):
        return os.path.join(self.root, f"{token}.{fmt}")

    def save(self, artifact):
        self.sweep()
        token = uuid.uuid4().hex
        with open(self._path(token, artifact.format), 'wb') as f:
            f.write(artifact.data)
        return token

    def path_for(self, token):
        """Return the stored file path for a token, or None"""
        if not token or not token.isalnum():
            return None
        for fmt in CONTENT_TYPES:
            path = self._path(token, fmt)
            if os.path.exists(path):
                return path
        return None

    def claim(self, token):
        """
        Take a stored artifact out of the store and return (bytes, format).

        The file is renamed before it is read, so when several callers claim
        the same token only one of them gets the data; the others get None.
        """
        path = self.path_for(token)
        if path is None:
            return None
        claimed = f"{path}.claimed-{uuid.uuid4().hex}"
        try:
            os.rename(path, claimed)
        except FileNotFoundError:
            return None
        try:
            with open(claimed, 'rb') as f:
                data = f.read()
        finally:
            with contextlib.suppress(FileNotFoundError):
                os.remove(claimed)
        return data, os.path.splitext(path)[1].lstrip('.')

    def discard(self, token):
        path = self.path_for(token)
        if path is None:
            return False
        with contextlib.suppress(FileNotFoundError):
            os.remove(path)
        return True

    def sweep(self):
        """Delete artifacts older than max_age"""
        cutoff = time.time() - self.max_age
        removed = 0
        with self._lock:
            for name in os.listdir(self.root):
                path = os.path.join(self.root, name)
                try:
                    if os.path.getmtime(path) < cutoff:
                        os.remove(path)
                        removed += 1
                except FileNotFoundError:
                    continue
        if removed:
            log_info(f"Removed {removed} expired model file(s)")
        return removed

    @contextlib.contextmanager
    def scoped(self):
        """Yield an ArtifactScope whose files are deleted if the block raises"""
        scope = ArtifactScope(self)
        try:
            yield scope
        except BaseException:
            discarded = scope.discard_all()
            if discarded:
                log_warning(f"Discarded {discarded} model file(s) from a failed request")
            raise
