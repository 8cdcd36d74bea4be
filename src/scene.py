"""
Minimal scene model.

Scene objects are opaque handles for the tracking code: they carry a pose and
a set of drawable parts that can be switched on and off. Composite objects
hold child objects; toggling a parent reaches every part underneath it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional

import numpy as np

from pose import Pose

LOGGER = logging.getLogger(__name__)


@dataclass
class Renderer:
    """A single drawable part."""

    name: str
    enabled: bool = True


@dataclass
class SceneObject:
    """Named node with a pose, drawable parts and child nodes."""

    name: str
    pose: Pose = field(default_factory=Pose.identity)
    renderers: List[Renderer] = field(default_factory=list)
    children: List["SceneObject"] = field(default_factory=list)

    def add_child(self, child: "SceneObject") -> "SceneObject":
        self.children.append(child)
        return child

    def iter_renderers(self) -> Iterator[Renderer]:
        """Yield every drawable part of this object and its descendants."""
        yield from self.renderers
        for child in self.children:
            yield from child.iter_renderers()

    def set_renderers_enabled(self, enabled: bool):
        # Collect first so a failing child never leaves a half-toggled object
        parts = list(self.iter_renderers())
        for part in parts:
            part.enabled = enabled

    @property
    def is_visible(self) -> bool:
        """True when every drawable part is enabled."""
        parts = list(self.iter_renderers())
        return bool(parts) and all(part.enabled for part in parts)

    @property
    def is_hidden(self) -> bool:
        return not any(part.enabled for part in self.iter_renderers())


@dataclass
class DebugSurface:
    """Quad that displays the detector's result image."""

    name: str = "DebugSurface"
    enabled: bool = False
    image: Optional[np.ndarray] = None


def create_camera_anchor() -> SceneObject:
    """Freestanding frame that follows the live camera pose."""
    return SceneObject(name="CameraAnchor")


def build_scene(objects_cfg: Optional[Dict]) -> Dict[str, SceneObject]:
    """Create scene objects from ``{name: {"parts": [...], "children": {...}}}``.

    Args:
        objects_cfg: Object definitions keyed by name

    Returns:
        dict: Top-level objects keyed by name
    """
    objects: Dict[str, SceneObject] = {}
    for name, definition in (objects_cfg or {}).items():
        objects[name] = _build_object(name, definition or {})
    LOGGER.debug("Scene built with objects: %s", list(objects))
    return objects


def _build_object(name: str, definition: Dict) -> SceneObject:
    obj = SceneObject(
        name=name,
        renderers=[Renderer(part) for part in definition.get("parts", [])],
    )
    for child_name, child_definition in (definition.get("children") or {}).items():
        obj.add_child(_build_object(child_name, child_definition or {}))
    return obj
