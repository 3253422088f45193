import logging
import pathlib
import sys
from typing import Dict, Iterable

import numpy as np
import pandas as pd
from progressbar import progressbar

from avatar import item_probabilities, list_items, roll_traits
from config import ASSETS_PATH, CATALOG, NONE_VALUE, Catalog

DEFAULT_ROLLS = 1000
LOG_FORMAT = "[%(asctime)s] %(levelname)-8s %(filename)12.12s:%(lineno)3d %(message)s"


def roll_many(
    asset_root: pathlib.Path, count: int, catalog: Catalog = CATALOG, random_source=None
) -> pd.DataFrame:
    """Roll ``count`` trait selections and tabulate them.

    Only selections are rolled, no image is composed.

    Returns:
        DataFrame with one column per catalog layer, NONE_VALUE where absent
    """
    rarity_data = {layer.name: [] for layer in catalog.layers}

    for _ in progressbar(range(count)):
        chosen = {t.layer: t.item for t in roll_traits(asset_root, catalog, random_source)}
        for layer_name, values in rarity_data.items():
            values.append(chosen.get(layer_name, NONE_VALUE))

    return pd.DataFrame(rarity_data)


def target_distribution(
    asset_root: pathlib.Path, layer_name: str, catalog: Catalog = CATALOG
) -> Dict[str, float]:
    """Configured probability of each item of a layer, before rule passes.

    The omission probability is reported under NONE_VALUE.
    """
    layer = catalog.layer(layer_name)
    items = list_items(asset_root, layer_name)
    if not items:
        return {NONE_VALUE: 1.0}

    weights = catalog.weights_for(layer_name)
    if weights is None:
        rarities = np.full(len(items), 1.0 / len(items))
    else:
        rarities = item_probabilities(items, weights)

    present = 1.0 - layer.omission_probability
    target = {NONE_VALUE: layer.omission_probability}
    target.update(zip(items, [float(r * present) for r in rarities]))
    return target


def actual_distribution(series: pd.Series, expected_traits: Iterable[str]) -> dict:
    """Calculate actual trait distribution from rolled selections."""
    total_samples = len(series)
    actual_dist = {}

    for trait in expected_traits:
        count = (series == trait).sum()
        actual_dist[trait] = count / total_samples if total_samples else 0.0

    return actual_dist


def rarity_report(
    selections: pd.DataFrame, asset_root: pathlib.Path, catalog: Catalog = CATALOG
) -> pd.DataFrame:
    """Compare observed trait frequencies with the configured ones.

    Hidden layers are skipped since they are never rolled. Masking and
    exclusion rules lower the observed frequency of the layers they prune.
    """
    rows = []
    for layer in catalog.list_selectable_layers():
        if layer.name not in selections.columns:
            continue

        target_dist = target_distribution(asset_root, layer.name, catalog)
        actual_dist = actual_distribution(selections[layer.name], target_dist.keys())

        for trait, target_prob in target_dist.items():
            actual_prob = actual_dist[trait]
            rows.append(
                {
                    "layer": layer.name,
                    "trait": trait,
                    "target": target_prob,
                    "actual": actual_prob,
                    "diff": abs(actual_prob - target_prob),
                }
            )

    return pd.DataFrame(rows, columns=["layer", "trait", "target", "actual", "diff"])


def main() -> None:
    """Print rarity statistics for the configured asset pack."""
    logging.basicConfig(format=LOG_FORMAT, level=logging.INFO, stream=sys.stdout)

    asset_root = pathlib.Path(sys.argv[1]) if len(sys.argv) > 1 else ASSETS_PATH
    count = int(sys.argv[2]) if len(sys.argv) > 2 else DEFAULT_ROLLS

    print(f"Rolling {count} avatars from {asset_root}...")
    selections = roll_many(asset_root, count)
    report = rarity_report(selections, asset_root)

    for layer_name, rows in report.groupby("layer", sort=False):
        print(f"\n{layer_name.upper()}:")
        for row in rows.itertuples():
            print(
                f"    {row.trait}: {row.actual:.4f} "
                f"(target: {row.target:.4f}, diff: {row.diff:.4f})"
            )
        print(f"  Max difference: {rows['diff'].max():.4f}")


if __name__ == "__main__":
    main()
