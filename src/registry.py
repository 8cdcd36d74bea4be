"""
Marker registry.

Maps marker identifiers to the scene objects they drive. The registry is
rebuilt from an ordered list of bindings; duplicate identifiers resolve to the
last binding.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from scene import SceneObject

LOGGER = logging.getLogger(__name__)


@dataclass
class MarkerBinding:
    """Configuration entry pairing a marker id with a target."""

    marker_id: int
    target: Optional[SceneObject]


class MarkerRegistry:
    """Owned mapping from marker id to scene object."""

    def __init__(self):
        self._targets: Dict[int, SceneObject] = {}

    def build(self, bindings: Iterable[MarkerBinding]) -> "MarkerRegistry":
        """Clear and repopulate from ``bindings`` (later duplicates win)."""
        self._targets.clear()
        for binding in bindings:
            if binding.target is None:
                LOGGER.debug("Skipping marker %s: no target bound", binding.marker_id)
                continue
            if binding.marker_id in self._targets:
                LOGGER.debug(
                    "Marker %s rebound from %s to %s",
                    binding.marker_id,
                    self._targets[binding.marker_id].name,
                    binding.target.name,
                )
            self._targets[int(binding.marker_id)] = binding.target
        LOGGER.info("Marker registry built with %d entries: %s", len(self._targets), sorted(self._targets))
        return self

    def lookup(self, marker_id: int) -> Optional[SceneObject]:
        return self._targets.get(int(marker_id))

    def all_targets(self) -> List[SceneObject]:
        return list(self._targets.values())

    def items(self) -> List[Tuple[int, SceneObject]]:
        return list(self._targets.items())

    def as_dict(self) -> Dict[int, SceneObject]:
        return dict(self._targets)

    def __contains__(self, marker_id) -> bool:
        return marker_id in self._targets

    def __len__(self) -> int:
        return len(self._targets)


def bindings_from_config(
    entries: Optional[Sequence[Mapping]],
    objects: Mapping[str, SceneObject],
) -> List[MarkerBinding]:
    """Convert ``[{"marker_id": 1, "object": "cube"}, ...]`` into bindings.

    Unknown object names produce bindings with no target, which the registry
    skips.
    """
    bindings: List[MarkerBinding] = []
    for entry in entries or []:
        name = entry.get("object")
        target = objects.get(name) if name is not None else None
        if target is None:
            LOGGER.warning("Marker %s refers to unknown object %r", entry.get("marker_id"), name)
        bindings.append(MarkerBinding(marker_id=int(entry["marker_id"]), target=target))
    return bindings
