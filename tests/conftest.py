"""
Builders for synthetic Flipnote containers used across the tests.
"""

from struct import pack, pack_into
from typing import Dict, Optional, Sequence, Tuple

import numpy as np
import pytest

HEADER_SIZE = 0x6A0
SOUND_MARGIN = 65536


def raw_line(bits: Sequence[bool]) -> bytes:
    """32 bytes for a mode 3 line, pixel 0 in the low bit of the first byte."""
    return np.packbits(np.asarray(bits, dtype=np.uint8), bitorder='little').tobytes()


def coded_line(groups: Dict[int, int]) -> bytes:
    """Mask plus group bytes for a mode 1 or 2 line."""
    mask = 0
    for group in groups:
        mask |= 0x80000000 >> group
    return pack('>I', mask) + bytes(groups[group] for group in sorted(groups))


def build_frame(
    flags: int,
    lines: Optional[Dict[Tuple[int, int], Tuple[int, bytes]]] = None,
    offset: Optional[Tuple[int, int]] = None,
) -> bytes:
    """
    Encode one frame payload.

    Args:
        flags: Frame flags byte
        lines: {(layer, line): (mode, line_bytes)}
        offset: Optional (x, y) translation, written only if given
    """
    lines = lines or {}
    payload = bytearray([flags])
    if offset is not None:
        payload += pack('<bb', *offset)

    modes = bytearray(96)
    for (layer, line), (mode, _) in lines.items():
        modes[layer * 48 + (line >> 2)] |= mode << ((line & 3) * 2)
    payload += modes

    for key in sorted(lines):
        payload += lines[key][1]
    return bytes(payload)


def build_animation(frames: Sequence[bytes], looped: bool = False) -> bytes:
    head = bytearray(8)
    pack_into('<H', head, 0, 4 * len(frames))
    if looped:
        head[6] = 0x02

    table = bytearray()
    position = 0
    for payload in frames:
        table += pack('<I', position)
        position += len(payload)
    return bytes(head) + bytes(table) + b''.join(frames)


def build_sound(
    frame_count: int,
    effects: Sequence[int] = (),
    channels: Sequence[bytes] = (b'', b'', b'', b''),
    frame_speed: int = 0,
    sound_speed: int = 0,
) -> Tuple[bytes, int]:
    """Return (section bytes, declared sound length)."""
    flags = bytearray(frame_count)
    for i, value in enumerate(effects):
        flags[i] = value
    flags += bytes(4 - (frame_count & 3))

    sound_header = pack('<4IBB', *(len(c) for c in channels), frame_speed, sound_speed) + bytes(14)
    return bytes(flags) + sound_header + b''.join(channels), sum(len(c) for c in channels)


def build_header(
    animation_size: int,
    sound_size: int,
    frame_count: int,
    locked: bool = False,
    creator_name: str = '',
    last_editor_name: str = '',
    user_name: str = '',
    creator_id: int = 0,
    last_editor_id: int = 0,
    previous_editor_id: int = 0,
    filename: bytes = bytes(18),
    original_filename: bytes = bytes(18),
    timestamp: int = 0,
    thumbnail_frame_index: int = 0,
    thumbnail: bytes = bytes(0x600),
) -> bytes:
    header = bytearray(HEADER_SIZE)
    header[0:4] = b'PARA'
    pack_into('<IIH', header, 4, animation_size, sound_size, frame_count)
    pack_into('<HH', header, 16, 1 if locked else 0, thumbnail_frame_index)
    for offset, name in ((20, creator_name), (42, last_editor_name), (64, user_name)):
        encoded = name.encode('utf-16-le')[:22]
        header[offset:offset + len(encoded)] = encoded
    pack_into('<QQ', header, 86, creator_id, last_editor_id)
    header[102:120] = filename
    header[120:138] = original_filename
    pack_into('<Q', header, 138, previous_editor_id)
    pack_into('<I', header, 154, timestamp)
    header[0xA0:0x6A0] = thumbnail
    return bytes(header)


def build_flipnote(
    frames: Sequence[bytes],
    effects: Sequence[int] = (),
    channels: Sequence[bytes] = (b'', b'', b'', b''),
    frame_speed: int = 0,
    sound_speed: int = 0,
    looped: bool = False,
    margin: bool = True,
    **header_fields,
) -> bytes:
    """Assemble a complete container; margin=False omits the trailing sound margin."""
    animation = build_animation(frames, looped=looped)
    sound, sound_size = build_sound(len(frames), effects, channels, frame_speed, sound_speed)
    if margin:
        sound += bytes(sound_size + SOUND_MARGIN - len(sound))
    header = build_header(len(animation), sound_size, len(frames), **header_fields)
    return header + animation + sound


@pytest.fixture
def blank_frame() -> bytes:
    return build_frame(0x80)
