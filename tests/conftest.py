"""Shared fixtures: synthetic asset trees and scripted random draws."""

import pathlib
from typing import Dict, Tuple

import pytest
from PIL import Image

from renderer import PillowRenderer

RED = (255, 0, 0, 255)
GREEN = (0, 255, 0, 255)
BLUE = (0, 0, 255, 255)
GREY = (128, 128, 128, 255)


class ScriptedRandom:
    """Random source returning a fixed sequence of draws."""

    def __init__(self, draws):
        self.draws = list(draws)
        self.calls = 0

    def random(self) -> float:
        if not self.draws:
            raise AssertionError("Random source exhausted")
        self.calls += 1
        return self.draws.pop(0)


def make_png(path: pathlib.Path, colour: Tuple[int, int, int, int], size=(1, 1)):
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new("RGBA", size, colour).save(path)
    return path


@pytest.fixture
def asset_tree(tmp_path):
    """Build ``<tmp>/assets/<layer>/<item>.png`` from a nested dict of colours."""
    root = tmp_path / "assets"
    root.mkdir()

    def build(layers: Dict[str, Dict[str, Tuple[int, int, int, int]]]) -> pathlib.Path:
        for layer, items in layers.items():
            (root / layer).mkdir(exist_ok=True)
            for item, colour in items.items():
                make_png(root / layer / f"{item}.png", colour)
        return root

    return build


@pytest.fixture
def renderer():
    return PillowRenderer()


@pytest.fixture
def output_dir(tmp_path):
    path = tmp_path / "out"
    path.mkdir()
    return path
