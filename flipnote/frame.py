from typing import Sequence, Tuple

import numpy as np

from .config import Config


def resolve_draw_index(draw_mode: int, paper: int) -> int:
    """
    Map a layer's 2-bit draw mode to an index into the animation palette.

    Args:
        draw_mode: Raw draw-mode code (0-3)
        paper: Paper colour index (0 or 1)

    Returns:
        Palette index the layer paints with
    """
    if draw_mode == 0:
        return paper
    if draw_mode == 1:
        return paper ^ 1
    return draw_mode


def compose_layers(layers: np.ndarray, flags: int) -> np.ndarray:
    """
    Merge both layers of a frame onto the paper colour.

    Layer 1 is painted first and layer 0 on top of it.

    Args:
        layers: Boolean array of shape (2, HEIGHT, WIDTH)
        flags: The frame's flags byte

    Returns:
        uint8 array of shape (HEIGHT, WIDTH) with palette indices 0-3
    """
    paper = flags & 1
    canvas = np.full((Config.HEIGHT, Config.WIDTH), paper, dtype=np.uint8)

    for layer_id in (1, 0):
        draw_mode = (flags >> (1 + layer_id * 2)) & 3
        canvas[layers[layer_id]] = resolve_draw_index(draw_mode, paper)

    return canvas


class Frame(object):
    """One decoded animation frame: two boolean layers plus its flags."""

    def __init__(self, layers: np.ndarray, flags: int, sound: Sequence[bool]):
        expected = (Config.LAYER_COUNT, Config.HEIGHT, Config.WIDTH)
        if layers.shape != expected:
            raise ValueError(f"Frame layers must have shape {expected}, got {layers.shape}")
        if len(sound) != Config.CHANNEL_COUNT:
            raise ValueError(f"Expected {Config.CHANNEL_COUNT} sound flags, got {len(sound)}")

        self._layers = layers.astype(bool, copy=True)
        self._layers.setflags(write=False)
        self._flags = flags & 0xFF
        self._sound = tuple(bool(s) for s in sound)

    @property
    def layers(self) -> np.ndarray:
        """Read-only boolean array of shape (2, 192, 256)."""
        return self._layers

    @property
    def flags(self) -> int:
        return self._flags

    @property
    def sound(self) -> Tuple[bool, ...]:
        """Which of the four audio channels start playing at this frame."""
        return self._sound

    @property
    def paper_color(self) -> int:
        return self._flags & 1

    @property
    def is_keyframe(self) -> bool:
        return bool(self._flags & 0x80)

    def layer(self, layer_id: int) -> np.ndarray:
        return self._layers[layer_id]

    def draw_mode(self, layer_id: int) -> int:
        """Raw 2-bit draw-mode code of a layer."""
        return (self._flags >> (1 + layer_id * 2)) & 3

    def draw_index(self, layer_id: int) -> int:
        """Palette index the layer's set pixels are painted with."""
        return resolve_draw_index(self.draw_mode(layer_id), self.paper_color)

    def compose(self) -> np.ndarray:
        """Composite the frame into a (192, 256) array of palette indices."""
        return compose_layers(self._layers, self._flags)

    def __repr__(self):
        return f"<Frame flags=0x{self._flags:02X} sound={self._sound}>"
