"""Transform capabilities for trimesh scene documents.

Each capability takes a SceneDocument and the stage parameters and
mutates the document in place. Invalid parameters raise StageError.
"""

from __future__ import annotations

import io as _io
import logging
import math
from typing import Any, Callable, Mapping, Optional

import trimesh
from PIL import Image

from gltf_optimizer.document import TEXTURE_SLOTS, SceneDocument, TrimeshIO
from gltf_optimizer.engine import Capability, DocumentIO
from gltf_optimizer.errors import StageError
from gltf_optimizer.stages import StageKind
from gltf_optimizer.textures import TextureStrategyResolver

logger = logging.getLogger(__name__)

DEDUP_PROPERTY_TYPES = {"mesh"}
TEXTURE_FORMATS = {"webp", "png", "jpeg"}


def _check_params(stage: str, params: Mapping[str, Any], allowed: set[str]) -> None:
    unknown = set(params) - allowed
    if unknown:
        raise StageError(f"{stage}: unknown parameter(s) {', '.join(sorted(unknown))}")


def _positive(stage: str, name: str, value: Any) -> float:
    try:
        value = float(value)
    except (TypeError, ValueError):
        raise StageError(f"{stage}: {name} must be a number, got {value!r}") from None
    if value <= 0:
        raise StageError(f"{stage}: {name} must be positive, got {value}")
    return value


def _digits(tolerance: float) -> int:
    """Decimal digits to round to for a merge tolerance."""
    return max(0, int(round(-math.log10(tolerance))))


def prune(document: SceneDocument, params: Mapping[str, Any]) -> None:
    """Drop geometry no node references, degenerate faces and loose vertices."""
    _check_params("prune", params, set())
    scene = document.scene

    referenced = set(scene.graph.geometry_nodes.keys())
    orphans = [name for name in scene.geometry if name not in referenced]
    if orphans:
        logger.debug("prune: removing %d unreferenced geometries", len(orphans))
        scene.delete_geometry(orphans)

    for _, mesh in document.meshes():
        mesh.update_faces(mesh.nondegenerate_faces())
        mesh.remove_unreferenced_vertices()


def dedup(document: SceneDocument, params: Mapping[str, Any]) -> None:
    """Point nodes at one copy of identical geometry and drop the duplicates."""
    _check_params("dedup", params, {"property_types"})
    property_types = {str(p).lower() for p in params.get("property_types", ["mesh"])}
    unsupported = property_types - DEDUP_PROPERTY_TYPES
    if unsupported:
        raise StageError(
            f"dedup: unsupported property type(s) {', '.join(sorted(unsupported))}"
        )

    scene = document.scene
    canonical: dict[tuple, str] = {}
    duplicates: dict[str, str] = {}
    for name, mesh in document.meshes():
        key = (mesh.identifier_hash, id(getattr(mesh.visual, "material", None)))
        if key in canonical:
            duplicates[name] = canonical[key]
        else:
            canonical[key] = name

    if not duplicates:
        return

    graph = scene.graph
    for geometry_name, nodes in list(graph.geometry_nodes.items()):
        target = duplicates.get(geometry_name)
        if target is None:
            continue
        for node in nodes:
            parent = graph.transforms.parents.get(node, graph.base_frame)
            matrix, _ = graph.get(frame_to=node, frame_from=parent)
            graph.update(frame_to=node, frame_from=parent, matrix=matrix, geometry=target)
    scene.delete_geometry(list(duplicates))
    logger.debug("dedup: merged %d duplicate geometries", len(duplicates))


def weld(document: SceneDocument, params: Mapping[str, Any]) -> None:
    """Merge vertices closer than ``tolerance``.

    Vertices whose normals differ by more than ``tolerance_normal`` stay
    separate when the mesh carries vertex normals.
    """
    _check_params("weld", params, {"tolerance", "tolerance_normal"})
    tolerance = _positive("weld", "tolerance", params.get("tolerance", 0.0001))
    tolerance_normal = params.get("tolerance_normal")
    digits_norm = None
    if tolerance_normal is not None:
        digits_norm = _digits(_positive("weld", "tolerance_normal", tolerance_normal))

    before = after = 0
    for _, mesh in document.meshes():
        before += len(mesh.vertices)
        mesh.merge_vertices(
            merge_norm=False,
            digits_vertex=_digits(tolerance),
            digits_norm=digits_norm,
        )
        after += len(mesh.vertices)
    logger.debug("weld(%g): %d -> %d vertices", tolerance, before, after)


def simplify(document: SceneDocument, params: Mapping[str, Any]) -> None:
    """Quadric decimation of every mesh with more than ``min_points`` vertices.

    ``error`` is accepted for compatibility with error-bounded simplifiers;
    the quadric decimator targets the face count from ``ratio`` only.
    """
    _check_params("simplify", params, {"ratio", "error", "min_points"})
    ratio = _positive("simplify", "ratio", params.get("ratio", 0.75))
    if ratio > 1:
        raise StageError(f"simplify: ratio must be at most 1, got {ratio}")
    if "error" in params:
        _positive("simplify", "error", params["error"])
    min_points = int(params.get("min_points", 100))

    scene = document.scene
    for name, mesh in list(document.meshes()):
        if len(mesh.vertices) <= min_points:
            continue
        target = max(1, int(len(mesh.faces) * ratio))
        if target >= len(mesh.faces):
            continue
        simplified = mesh.simplify_quadric_decimation(face_count=target)
        scene.geometry[name] = simplified
        logger.debug("simplify: %s %d -> %d faces", name, len(mesh.faces), len(simplified.faces))


def flatten(document: SceneDocument, params: Mapping[str, Any]) -> None:
    """Bake node transforms into geometry so every node hangs off the root."""
    _check_params("flatten", params, set())
    scene = document.scene
    flat = trimesh.Scene()
    for node in scene.graph.nodes_geometry:
        transform, geometry_name = scene.graph[node]
        geometry = scene.geometry[geometry_name].copy()
        geometry.apply_transform(transform)
        flat.add_geometry(geometry, node_name=node, geom_name=node)
    document.scene = flat


def join(document: SceneDocument, params: Mapping[str, Any]) -> None:
    """Concatenate all meshes into one."""
    _check_params("join", params, {"name"})
    meshes = []
    scene = document.scene
    for node in scene.graph.nodes_geometry:
        transform, geometry_name = scene.graph[node]
        geometry = scene.geometry[geometry_name]
        if not hasattr(geometry, "faces"):
            continue
        mesh = geometry.copy()
        mesh.apply_transform(transform)
        meshes.append(mesh)
    if len(meshes) < 2:
        return
    joined = trimesh.util.concatenate(meshes)
    document.scene = trimesh.Scene()
    document.scene.add_geometry(joined, geom_name=params.get("name", "joined"))


def normals(document: SceneDocument, params: Mapping[str, Any]) -> None:
    """Make face winding consistent so vertex normals point outwards."""
    _check_params("normals", params, {"overwrite"})
    for _, mesh in document.meshes():
        mesh.fix_normals()


class TextureCompressor:
    """Resize and re-encode material textures with Pillow."""

    def __init__(self, resolver: Optional[TextureStrategyResolver] = None) -> None:
        self.resolver = resolver or TextureStrategyResolver()

    def __call__(self, document: SceneDocument, params: Mapping[str, Any]) -> None:
        _check_params("texture-compress", params, {"target_format", "quality", "resize"})
        target_format = str(params.get("target_format", "webp")).lower()
        if target_format == "jpg":
            target_format = "jpeg"
        if target_format not in TEXTURE_FORMATS:
            raise StageError(f"texture-compress: unsupported target format {target_format!r}")
        quality = int(params.get("quality", 90))
        if not 0 < quality <= 100:
            raise StageError(f"texture-compress: quality must be in 1..100, got {quality}")
        resize = self._resize_function(params.get("resize", "strategy"))

        if target_format == "webp":
            document.export_hints["webp"] = True

        done: dict[int, Image.Image] = {}
        for material_name, slot, holder, image in self._textures(document):
            key = id(image)
            if key not in done:
                name = f"{material_name}_{slot}"
                done[key] = self._process(image, name, resize, target_format, quality)
            setattr(holder, slot, done[key])

    def _resize_function(self, resize: Any) -> Optional[Callable[[str, int, int], tuple[int, int]]]:
        if resize is None or resize is False:
            return None
        if resize == "strategy":
            return self.resolver.resize_callback()
        if callable(resize):
            return resize
        if isinstance(resize, (list, tuple)) and len(resize) == 2:
            max_width, max_height = (int(v) for v in resize)

            def fit(name: str, width: int, height: int) -> tuple[int, int]:
                scale = min(1.0, max_width / width, max_height / height)
                return max(1, round(width * scale)), max(1, round(height * scale))

            return fit
        raise StageError(f"texture-compress: invalid resize option {resize!r}")

    def _textures(self, document: SceneDocument):
        for _, mesh in document.meshes():
            material = getattr(mesh.visual, "material", None)
            if material is None:
                continue
            material_name = getattr(material, "name", None) or "material"
            if isinstance(material, trimesh.visual.material.PBRMaterial):
                for slot in TEXTURE_SLOTS:
                    image = getattr(material, slot, None)
                    if isinstance(image, Image.Image):
                        yield material_name, slot, material, image
            elif isinstance(getattr(material, "image", None), Image.Image):
                yield material_name, "image", material, material.image

    def _process(
        self,
        image: Image.Image,
        name: str,
        resize: Optional[Callable[[str, int, int], tuple[int, int]]],
        target_format: str,
        quality: int,
    ) -> Image.Image:
        if resize is not None:
            new_size = tuple(resize(name, image.width, image.height))
            if new_size != image.size:
                image = image.resize(new_size, Image.Resampling.LANCZOS)

        # trimesh embeds JPEG as-is, PNG otherwise, WebP via the export hint
        if target_format == "webp":
            return image
        buffer = _io.BytesIO()
        if target_format == "jpeg":
            image.convert("RGB").save(buffer, format="JPEG", quality=quality)
        else:
            image.save(buffer, format="PNG", optimize=True)
        buffer.seek(0)
        encoded = Image.open(buffer)
        encoded.load()
        return encoded


class TrimeshEngine:
    """Transform engine for trimesh scene documents.

    Stage kinds without an entry in the capability table are rejected by
    the pipeline before anything runs.
    """

    def __init__(
        self,
        io: Optional[DocumentIO] = None,
        texture_resolver: Optional[TextureStrategyResolver] = None,
    ) -> None:
        self.io = io or TrimeshIO()
        self._capabilities: dict[StageKind, Capability] = {
            StageKind.PRUNE: prune,
            StageKind.DEDUP: dedup,
            StageKind.WELD: weld,
            StageKind.SIMPLIFY: simplify,
            StageKind.FLATTEN: flatten,
            StageKind.JOIN: join,
            StageKind.NORMALS: normals,
            StageKind.BACKFACE_CULLING: self.backface_culling,
            StageKind.TEXTURE_COMPRESS: TextureCompressor(texture_resolver),
        }

    @property
    def capabilities(self) -> Mapping[StageKind, Capability]:
        return self._capabilities

    def backface_culling(self, document: Any, params: Mapping[str, Any]) -> None:
        """Mark materials single-sided (``cull=True``) or double-sided."""
        _check_params("backface-culling", params, {"cull"})
        cull = params.get("cull", True)
        if not isinstance(cull, bool):
            raise StageError(f"backface-culling: cull must be a boolean, got {cull!r}")
        for material in self.io.list_materials(document):
            self.io.set_double_sided(material, not cull)
