import os
import pathlib
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional, Tuple

# Path constants
ASSETS_PATH = pathlib.Path(os.environ.get("AVATAR_ASSETS_PATH", "assets"))

# Constants
IMAGE_SUFFIX = ".png"
OUTPUT_PREFIX = "avatar-"
DEFAULT_BLEND = "normal"
NONE_VALUE = "none"


@dataclass(frozen=True)
class LayerDefinition:
    name: str
    z: int
    hidden: bool = False
    omission_probability: float = 0.0


@dataclass(frozen=True)
class ExclusionRule:
    """Choosing ``item`` for ``layer`` removes every layer in ``targets``."""

    layer: str
    item: str
    targets: Tuple[str, ...]


@dataclass(frozen=True)
class MaskingRule:
    """``layer`` is only kept when ``base_layer`` holds one of ``allowed``."""

    layer: str
    base_layer: str
    allowed: FrozenSet[str]


@dataclass(frozen=True)
class DerivedLayerRule:
    """Set hidden ``target`` to the item of ``source`` when ``trigger`` is chosen."""

    target: str
    source: str
    trigger: str


@dataclass(frozen=True)
class Catalog:
    """Layer categories, stacking order and selection rules of an asset pack."""

    layers: Tuple[LayerDefinition, ...]
    anchor: str
    exclusions: Tuple[ExclusionRule, ...] = ()
    masking: Tuple[MaskingRule, ...] = ()
    derived: Tuple[DerivedLayerRule, ...] = ()
    weights: Dict[str, Dict[str, float]] = field(default_factory=dict)
    z_overrides: Dict[str, Dict[str, int]] = field(default_factory=dict)
    blend_overrides: Dict[str, Dict[str, str]] = field(default_factory=dict)

    def __post_init__(self):
        names = [layer.name for layer in self.layers]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate layer names in catalog: {names}")
        if self.anchor not in names:
            raise ValueError(f"Anchor layer not in catalog: {self.anchor}")
        for layer in self.layers:
            if not 0.0 <= layer.omission_probability <= 1.0:
                raise ValueError(
                    f"Invalid omission probability for {layer.name}: "
                    f"{layer.omission_probability}"
                )

    def layer(self, name: str) -> LayerDefinition:
        for layer in self.layers:
            if layer.name == name:
                return layer
        raise KeyError(name)

    def layer_index(self, name: str) -> int:
        for idx, layer in enumerate(self.layers):
            if layer.name == name:
                return idx
        raise KeyError(name)

    def list_selectable_layers(self) -> List[LayerDefinition]:
        """Non-hidden layers, in declared order."""
        return [layer for layer in self.layers if not layer.hidden]

    def weights_for(self, layer: str) -> Optional[Dict[str, float]]:
        """Explicit weight table of a layer, or None for uniform sampling."""
        return self.weights.get(layer)

    def resolve_z(self, layer: str, item: str) -> int:
        overrides = self.z_overrides.get(layer, {})
        if item in overrides:
            return overrides[item]
        return self.layer(layer).z

    def resolve_blend(self, layer: str, item: str) -> str:
        overrides = self.blend_overrides.get(layer, {})
        if item in overrides:
            return overrides[item]
        return DEFAULT_BLEND


# Layer configuration, bottom to top
LAYERS = (
    LayerDefinition("Background", 0),
    LayerDefinition("Skin", 1),
    LayerDefinition("UnclothedBase", 1, hidden=True),
    LayerDefinition("Face", 2),
    LayerDefinition("Eyes", 3),
    LayerDefinition("Eye Color", 4),
    LayerDefinition("Mouth", 4),
    LayerDefinition("Neck", 5),
    LayerDefinition("Necklaces", 5, omission_probability=2 / 3),
    LayerDefinition("Shirt", 6),
    LayerDefinition("Hair", 7),
    LayerDefinition("Brows", 8),
    LayerDefinition("Earrings", 9),
    LayerDefinition("Face Decoration", 10, omission_probability=0.8),
    LayerDefinition("Glasses", 10, omission_probability=0.75),
    LayerDefinition("Hat", 11, omission_probability=0.5),
    LayerDefinition("Overlay", 13, omission_probability=0.9),
)

EXCLUSIONS = (
    ExclusionRule("Hat", "Strawberry Hat", ("Hair", "Earrings")),
    ExclusionRule("Eyes", "Chinese", ("Brows",)),
)

# Eyes that support Eye Color masking
MASKABLE_EYES = frozenset(
    ["Classic", "Crying", "Dilated", "Heart", "Sleepy", "Sparkle", "Teary"]
)

MASKING = (MaskingRule("Eye Color", "Eyes", MASKABLE_EYES),)

# Shirts cut away the skin, the unclothed base restores the body underneath
DERIVED = (DerivedLayerRule("UnclothedBase", "Skin", "Shirt"),)

# Pink 80%, remaining 20% split evenly among the other skins
WEIGHTS = {"Skin": {"Pink": 0.8}}

Z_OVERRIDES = {"Overlay": {"Banana Sticker": 9}}

BLEND_OVERRIDES = {
    "Overlay": {
        "M1 Blood": "colour-burn",
        "M2 Blood": "colour-burn",
        "M3 Blood": "colour-burn",
        "M4 Blood": "colour-burn",
    },
}

CATALOG = Catalog(
    layers=LAYERS,
    anchor="Skin",
    exclusions=EXCLUSIONS,
    masking=MASKING,
    derived=DERIVED,
    weights=WEIGHTS,
    z_overrides=Z_OVERRIDES,
    blend_overrides=BLEND_OVERRIDES,
)
