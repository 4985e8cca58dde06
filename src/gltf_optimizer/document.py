"""trimesh-backed scene documents and document I/O."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator, Mapping, Optional

import trimesh
from trimesh.exchange.gltf import export_glb, export_gltf

from gltf_optimizer.errors import DocumentIOError
from gltf_optimizer.models import ComplexityMetrics

# PBR material slots that may hold a texture image
TEXTURE_SLOTS = (
    "baseColorTexture",
    "metallicRoughnessTexture",
    "normalTexture",
    "occlusionTexture",
    "emissiveTexture",
)


@dataclass
class SceneDocument:
    """A trimesh scene plus export hints collected by transform stages."""

    scene: trimesh.Scene
    source: Optional[Path] = None
    export_hints: dict = field(default_factory=dict)

    def meshes(self) -> Iterator[tuple[str, Any]]:
        """``(name, geometry)`` pairs for every geometry with faces."""
        for name, geometry in self.scene.geometry.items():
            if hasattr(geometry, "faces") and len(geometry.faces) > 0:
                yield name, geometry


class TrimeshIO:
    """Document engine built on trimesh scenes.

    Example:
        io = TrimeshIO()
        document = io.read("model.glb")
        io.write(Path("out/model.gltf"), document, {"pretty": True})
    """

    def read(self, path: Path) -> SceneDocument:
        path = Path(path)
        if not path.exists():
            raise DocumentIOError("source file not found", path=path)
        try:
            scene = trimesh.load(str(path), force="scene", process=False)
        except Exception as e:
            raise DocumentIOError(f"cannot read scene: {e}", path=path) from e
        return SceneDocument(scene=scene, source=path)

    def write(self, path: Path, document: SceneDocument, options: Mapping[str, Any]) -> None:
        path = Path(path)
        suffix = path.suffix.lower()
        try:
            if suffix == ".glb":
                self._write_glb(path, document)
            elif suffix == ".gltf":
                self._write_gltf(path, document, options)
            else:
                raise DocumentIOError(f"unsupported output format {suffix!r}", path=path)
        except DocumentIOError:
            raise
        except Exception as e:
            raise DocumentIOError(f"cannot write scene: {e}", path=path) from e

    def clone(self, document: SceneDocument) -> SceneDocument:
        return SceneDocument(
            scene=document.scene.copy(),
            source=document.source,
            export_hints=dict(document.export_hints),
        )

    def query_complexity(self, document: SceneDocument) -> ComplexityMetrics:
        vertices = 0
        triangles = 0
        for geometry in document.scene.geometry.values():
            vertices += len(getattr(geometry, "vertices", ()))
            if hasattr(geometry, "faces"):
                triangles += len(geometry.faces)
        return ComplexityMetrics(vertex_count=vertices, triangle_count=triangles)

    def list_materials(self, document: SceneDocument) -> list:
        """Distinct materials in the scene, converted to PBR where needed."""
        materials = []
        seen = set()
        for _, geometry in document.meshes():
            visual = geometry.visual
            material = getattr(visual, "material", None)
            if material is None:
                continue
            if not isinstance(material, trimesh.visual.material.PBRMaterial):
                material = material.to_pbr()
                visual.material = material
            if id(material) not in seen:
                seen.add(id(material))
                materials.append(material)
        return materials

    def set_double_sided(self, material: Any, double_sided: bool) -> None:
        material.doubleSided = double_sided

    def _export_kwargs(self, document: SceneDocument) -> dict:
        kwargs = {}
        if document.export_hints.get("webp"):
            kwargs["extension_webp"] = True
        return kwargs

    def _write_glb(self, path: Path, document: SceneDocument) -> None:
        data = export_glb(document.scene, **self._export_kwargs(document))
        path.write_bytes(data)

    def _write_gltf(self, path: Path, document: SceneDocument, options: Mapping[str, Any]) -> None:
        files = export_gltf(
            document.scene,
            embed_buffers=bool(options.get("embed_images", False)),
            merge_buffers=True,
            **self._export_kwargs(document),
        )

        tree = None
        renamed = {}
        for name, data in files.items():
            if name.endswith(".gltf"):
                tree = json.loads(data)
                continue
            # Side files get the model stem so several models can share a directory
            new_name = f"{path.stem}_{name}"
            (path.parent / new_name).write_bytes(data)
            renamed[name] = new_name

        if tree is None:
            raise DocumentIOError("exporter produced no glTF JSON", path=path)

        for key in ("buffers", "images"):
            for item in tree.get(key, []):
                uri = item.get("uri")
                if uri in renamed:
                    item["uri"] = renamed[uri]

        indent = 2 if options.get("pretty", False) else None
        path.write_text(json.dumps(tree, indent=indent), encoding="utf-8")
