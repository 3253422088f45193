import pathlib


class AvatarError(Exception):
    """Base class for avatar generation failures."""


class DependencyUnavailable(AvatarError):
    """The compositing library could not be loaded."""


class AssetRootInvalid(AvatarError):
    """The asset root or its anchor category is missing or empty."""


class NoTraitsAvailable(AvatarError):
    """No trait survived selection, nothing to compose."""


class AssetDecodeError(AvatarError):
    """A listed trait file is not a readable image."""

    def __init__(self, layer: str, item: str, path: pathlib.Path):
        self.layer = layer
        self.item = item
        self.path = path
        super().__init__(f"Cannot decode {layer}/{item}: {path}")
