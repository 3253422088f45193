import logging
import os
import pathlib
import tempfile
from collections import namedtuple
from typing import Dict, List, Optional

import numpy as np

from config import CATALOG, IMAGE_SUFFIX, OUTPUT_PREFIX, Catalog
from exceptions import (
    AssetDecodeError,
    AssetRootInvalid,
    AvatarError,
    DependencyUnavailable,
    NoTraitsAvailable,
)
from renderer import Renderer, load_renderer

logger = logging.getLogger(__name__)

# Initialize random number generator
rng = np.random.default_rng()

# Compositing capability, resolved once at import
RENDERER = load_renderer()

Trait = namedtuple("Trait", ["layer", "item", "z", "blend"])


def trait_path(asset_root: pathlib.Path, layer: str, item: str) -> pathlib.Path:
    return pathlib.Path(asset_root) / layer / f"{item}{IMAGE_SUFFIX}"


def list_items(asset_root: pathlib.Path, layer: str) -> List[str]:
    """Item names of a layer category, sorted. Missing category gives []."""
    layer_path = pathlib.Path(asset_root) / layer
    if not layer_path.is_dir():
        return []
    return sorted(
        trait.stem for trait in layer_path.glob(f"*{IMAGE_SUFFIX}") if trait.is_file()
    )


def pick_uniform(items: List[str], draw: float) -> str:
    return items[min(int(draw * len(items)), len(items) - 1)]


def item_probabilities(items: List[str], weights: Dict[str, float]) -> np.ndarray:
    """Probability of each item given explicit weights and an even remainder.

    Explicit weights count only for items present in ``items``; the mass left
    over is split evenly across the unlisted items, then the vector is
    normalised.
    """
    explicit = {item: weights[item] for item in items if item in weights}
    unweighted = [item for item in items if item not in explicit]
    remainder = max(0.0, 1.0 - sum(explicit.values()))
    share = remainder / len(unweighted) if unweighted else 0.0

    rarities = np.array([explicit.get(item, share) for item in items], dtype=float)
    if rarities.sum() <= 0:
        rarities = np.ones(len(items))
    return rarities / rarities.sum()


def pick_weighted(items: List[str], weights: Dict[str, float], draw: float) -> str:
    """Inverse transform sampling over the cumulative item probabilities.

    Args:
        items: Candidate item names, in listing order
        weights: Explicit probability per item name
        draw: Uniform sample in [0, 1)

    Returns:
        The chosen item name
    """
    cum_rarities = np.cumsum(item_probabilities(items, weights))
    idx = int(np.searchsorted(cum_rarities, draw, side="right"))
    return items[min(idx, len(items) - 1)]


def _apply_masking(selected: Dict[str, str], catalog: Catalog) -> None:
    for rule in catalog.masking:
        if rule.layer in selected and selected.get(rule.base_layer) not in rule.allowed:
            logger.debug(
                "Masking %s: %s=%s not compatible",
                rule.layer,
                rule.base_layer,
                selected.get(rule.base_layer),
            )
            del selected[rule.layer]


def _apply_exclusions(selected: Dict[str, str], catalog: Catalog) -> None:
    for rule in catalog.exclusions:
        if selected.get(rule.layer) != rule.item:
            continue
        for target in rule.targets:
            if selected.pop(target, None) is not None:
                logger.debug("%s/%s excludes %s", rule.layer, rule.item, target)


def _apply_derived(
    selected: Dict[str, str], catalog: Catalog, asset_root: pathlib.Path
) -> None:
    # Evaluated against the pruned selection, the derived layers do not chain
    pruned = dict(selected)
    for rule in catalog.derived:
        if rule.source not in pruned or rule.trigger not in pruned:
            continue
        item = pruned[rule.source]
        if trait_path(asset_root, rule.target, item).is_file():
            selected[rule.target] = item
            logger.debug("Derived %s=%s", rule.target, item)
        else:
            logger.debug("Derived %s=%s has no asset, skipped", rule.target, item)


def roll_traits(
    asset_root: pathlib.Path, catalog: Catalog = CATALOG, random_source=None
) -> List[Trait]:
    """Roll a rule-valid trait combination, ordered bottom to top.

    Args:
        asset_root: Directory holding one sub-directory per layer
        catalog: Layers and selection rules
        random_source: Object with a ``random()`` method, module rng if None

    Returns:
        Traits sorted by stacking height, ties in catalog order
    """
    source = random_source if random_source is not None else rng
    asset_root = pathlib.Path(asset_root)
    selected: Dict[str, str] = {}
    stocked = 0

    for layer in catalog.list_selectable_layers():
        items = list_items(asset_root, layer.name)
        if not items:
            continue
        stocked += 1

        if layer.omission_probability > 0 and source.random() < layer.omission_probability:
            logger.debug("Omitting %s", layer.name)
            continue

        weights = catalog.weights_for(layer.name)
        if weights is None:
            selected[layer.name] = pick_uniform(items, source.random())
        else:
            selected[layer.name] = pick_weighted(items, weights, source.random())

    if stocked == 0:
        raise NoTraitsAvailable(f"No layer has any asset under {asset_root}")

    _apply_masking(selected, catalog)
    _apply_exclusions(selected, catalog)
    _apply_derived(selected, catalog, asset_root)

    if not selected:
        raise NoTraitsAvailable("Every layer was omitted or excluded")

    traits = [
        Trait(
            layer,
            item,
            catalog.resolve_z(layer, item),
            catalog.resolve_blend(layer, item),
        )
        for layer, item in selected.items()
    ]
    return sorted(traits, key=lambda t: (t.z, catalog.layer_index(t.layer)))


def _load_trait(renderer: Renderer, asset_root: pathlib.Path, trait: Trait):
    path = trait_path(asset_root, trait.layer, trait.item)
    try:
        return renderer.load(path)
    except (OSError, ValueError) as exc:
        raise AssetDecodeError(trait.layer, trait.item, path) from exc


def compose(
    asset_root: pathlib.Path, traits: List[Trait], renderer: Renderer
) -> bytes:
    """Flatten ordered traits into PNG bytes, the first trait is the canvas."""
    if not traits:
        raise NoTraitsAvailable("No traits to compose")
    asset_root = pathlib.Path(asset_root)

    canvas = _load_trait(renderer, asset_root, traits[0])
    for trait in traits[1:]:
        layer = _load_trait(renderer, asset_root, trait)
        canvas = renderer.composite(canvas, layer, trait.blend)

    return renderer.encode(canvas)


def generate(
    asset_root: pathlib.Path,
    catalog: Catalog = CATALOG,
    renderer: Optional[Renderer] = None,
    random_source=None,
    output_dir: Optional[pathlib.Path] = None,
) -> pathlib.Path:
    """Generate one avatar and write it to a fresh temporary PNG.

    The caller owns the returned file and is responsible for deleting it.
    """
    renderer = renderer if renderer is not None else RENDERER
    if not renderer.available:
        raise DependencyUnavailable("No compositing library available")

    traits = roll_traits(asset_root, catalog, random_source)
    logger.debug("Rolled %s", [(t.layer, t.item) for t in traits])
    data = compose(asset_root, traits, renderer)

    fd, name = tempfile.mkstemp(prefix=OUTPUT_PREFIX, suffix=IMAGE_SUFFIX, dir=output_dir)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
    except OSError:
        os.unlink(name)
        raise

    logger.info("Avatar written to %s", name)
    return pathlib.Path(name)


def check_generation(
    asset_root: pathlib.Path,
    catalog: Catalog = CATALOG,
    renderer: Optional[Renderer] = None,
) -> None:
    """Raise DependencyUnavailable or AssetRootInvalid when generation cannot run."""
    renderer = renderer if renderer is not None else RENDERER
    if not renderer.available:
        raise DependencyUnavailable("No compositing library available")

    asset_root = pathlib.Path(asset_root)
    if not asset_root.is_dir():
        raise AssetRootInvalid(f"Asset root not found: {asset_root}")
    if not list_items(asset_root, catalog.anchor):
        raise AssetRootInvalid(f"No {catalog.anchor} assets under {asset_root}")


def can_generate(
    asset_root: pathlib.Path,
    catalog: Catalog = CATALOG,
    renderer: Optional[Renderer] = None,
) -> bool:
    """Report whether ``generate`` can run, never raises."""
    try:
        check_generation(asset_root, catalog, renderer)
    except (AvatarError, OSError, TypeError) as exc:
        logger.info("Avatar generation unavailable: %s", exc)
        return False
    return True
