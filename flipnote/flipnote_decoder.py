import io
import logging
from datetime import datetime, timedelta, timezone
from io import IOBase
from struct import unpack, unpack_from
from typing import List, Optional, Tuple

import numpy as np

from .config import Config
from .errors import FormatError, TruncatedInputError
from .flipnote import Flipnote
from .frame import Frame

logger = logging.getLogger(__name__)

EPOCH = datetime(2000, 1, 1, tzinfo=timezone.utc)


def _read_up_to(fp: IOBase, size: int) -> bytes:
    """Read up to size bytes, stopping early only at end of stream."""
    chunks = []
    remaining = size
    while remaining > 0:
        chunk = fp.read(remaining)
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= len(chunk)
    return b''.join(chunks)


def _decode_name(raw: bytes) -> str:
    return raw.decode('utf-16-le', errors='replace').split('\0')[0]


def decode_thumbnail(raw: bytes) -> np.ndarray:
    """
    Decode the 4-bit tiled thumbnail into palette indices.

    The image is stored as 6 rows of 8 tiles, each tile 8x8 pixels, two
    pixels per byte with the left pixel in the low nibble.

    Args:
        raw: The 1536 thumbnail bytes from the header

    Returns:
        uint8 array of shape (48, 64)
    """
    packed = np.frombuffer(raw, dtype=np.uint8)
    nibbles = np.empty(packed.size * 2, dtype=np.uint8)
    nibbles[0::2] = packed & 0x0F
    nibbles[1::2] = packed >> 4
    # (tile_y, tile_x, y, x) -> (tile_y, y, tile_x, x)
    tiles = nibbles.reshape(6, 8, 8, 8).transpose(0, 2, 1, 3)
    return tiles.reshape(Config.THUMBNAIL_HEIGHT, Config.THUMBNAIL_WIDTH)


def translate_layers(layers: np.ndarray, offset_x: int, offset_y: int) -> np.ndarray:
    """
    Copy layers shifted by (offset_x, offset_y).

    Pixels moved outside the canvas are dropped and uncovered pixels are
    left blank.
    """
    height, width = layers.shape[-2:]
    out = np.zeros_like(layers)
    if abs(offset_x) >= width or abs(offset_y) >= height:
        return out

    out[
        :,
        max(offset_y, 0):height + min(offset_y, 0),
        max(offset_x, 0):width + min(offset_x, 0),
    ] = layers[
        :,
        max(-offset_y, 0):height - max(offset_y, 0),
        max(-offset_x, 0):width - max(offset_x, 0),
    ]
    return out


class _AnimationDecoder:
    """Internal helper reconstructing frame layers from the animation section."""

    def __init__(self, data: bytes, frame_count: int):
        if len(data) < 8:
            raise TruncatedInputError('animation header', 8, len(data))

        table_end = 8 + 4 * frame_count
        if len(data) < table_end:
            raise TruncatedInputError('frame offset table', table_end, len(data))

        self._data = data
        self._frame_count = frame_count
        # Frame payload offsets are relative to the end of the offset table region
        self._frames_start = 8 + unpack_from('<H', data, 0)[0]
        self.looped = bool(data[6] & 0x02)

    def _read(self, pos: int, size: int) -> bytes:
        if pos + size > len(self._data):
            raise TruncatedInputError('frame data', pos + size, len(self._data))
        return self._data[pos:pos + size]

    def decode(self) -> List[Tuple[int, np.ndarray]]:
        """
        Decode every frame in order.

        Returns:
            List of (flags, layers) tuples, layers of shape (2, 192, 256)
        """
        frames = []
        previous: Optional[np.ndarray] = None

        for frame_id in range(self._frame_count):
            offset = unpack_from('<I', self._data, 8 + frame_id * 4)[0]
            flags, layers = self._decode_frame(self._frames_start + offset, previous)
            frames.append((flags, layers))
            previous = layers

        return frames

    def _decode_frame(self, pos: int, previous: Optional[np.ndarray]) -> Tuple[int, np.ndarray]:
        flags = self._read(pos, 1)[0]
        base = pos + 1

        if flags & 0x80 or previous is None:
            layers = np.zeros((Config.LAYER_COUNT, Config.HEIGHT, Config.WIDTH), dtype=bool)
        else:
            offset_x = offset_y = 0
            if flags & 0x40:
                offset_x, offset_y = unpack('<bb', self._read(base, 2))
                base += 2
            layers = translate_layers(previous, offset_x, offset_y)

        # 2 bits per line, 4 lines per byte, 48 bytes per layer
        line_modes = self._read(base, Config.LAYER_COUNT * 48)
        pos = base + Config.LAYER_COUNT * 48

        for layer_id in range(Config.LAYER_COUNT):
            for line in range(Config.HEIGHT):
                mode = (line_modes[layer_id * 48 + (line >> 2)] >> ((line & 3) * 2)) & 3
                if mode:
                    pos = self._decode_line(layers[layer_id, line], mode, pos)

        return flags, layers

    def _decode_line(self, row: np.ndarray, mode: int, pos: int) -> int:
        """XOR one encoded line into row in place and return the new read position."""
        if mode == 3:
            raw = np.frombuffer(self._read(pos, 32), dtype=np.uint8)
            row ^= np.unpackbits(raw, bitorder='little').astype(bool)
            return pos + 32

        used = unpack('>I', self._read(pos, 4))[0]
        pos += 4

        groups = [group for group in range(32) if used & (0x80000000 >> group)]
        if groups:
            raw = np.frombuffer(self._read(pos, len(groups)), dtype=np.uint8)
            bits = np.unpackbits(raw, bitorder='little').reshape(len(groups), 8)
            target = 1 if mode == 1 else 0
            row.reshape(32, 8)[groups] ^= bits == target
            pos += len(groups)

        if mode == 2:
            np.logical_not(row, out=row)

        return pos


def _parse_sound_section(data: bytes, frame_count: int):
    """
    Split the sound section into per-frame triggers, speeds and channel data.

    Returns:
        (triggers, frame_speed, sound_speed, channels)
    """
    if len(data) < frame_count:
        raise TruncatedInputError('sound trigger flags', frame_count, len(data))

    triggers = []
    for frame_id in range(frame_count):
        effects = data[frame_id]
        triggers.append((
            frame_id == 0,
            bool(effects & 0x01),
            bool(effects & 0x02),
            bool(effects & 0x04),
        ))

    pos = frame_count + (4 - (frame_count & 3))
    if len(data) < pos + 32:
        raise TruncatedInputError('sound header', pos + 32, len(data))

    sizes = unpack_from('<4I', data, pos)
    frame_speed = data[pos + 16]
    sound_speed = data[pos + 17]
    for name, speed in (('frame', frame_speed), ('sound', sound_speed)):
        if speed >= len(Config.SPEED_TABLE):
            raise FormatError(f"Invalid {name} speed setting: {speed}")
    pos += 32

    channels = []
    for channel_id, size in enumerate(sizes):
        if pos + size > len(data):
            raise TruncatedInputError(f'sound channel {channel_id}', pos + size, len(data))
        channels.append(bytes(data[pos:pos + size]))
        pos += size

    return triggers, frame_speed, sound_speed, channels


class FlipnoteDecoder(object):
    @staticmethod
    def decode_file(file_path: str, strict: bool = True) -> Flipnote:
        with open(file_path, 'rb') as fp:
            return FlipnoteDecoder.decode_stream(fp, strict=strict)

    @staticmethod
    def decode_bytes(data: bytes, strict: bool = True) -> Flipnote:
        return FlipnoteDecoder.decode_stream(io.BytesIO(data), strict=strict)

    @staticmethod
    def decode_stream(fp: IOBase, strict: bool = True) -> Flipnote:
        """
        Decode a Flipnote from a binary stream.

        The header, animation section and sound section are read fully into
        memory before any decoding happens.

        Args:
            fp: Binary file-like object positioned at the magic
            strict: Require the full sound margin to be present

        Returns:
            Decoded Flipnote

        Raises:
            FormatError: If the magic is wrong or a speed setting is invalid
            TruncatedInputError: If a section is shorter than declared
        """
        header = _read_up_to(fp, Config.HEADER_SIZE)
        if len(header) >= len(Config.MAGIC) and header[:len(Config.MAGIC)] != Config.MAGIC:
            raise FormatError(f"Invalid magic: {header[:len(Config.MAGIC)]!r}")
        if len(header) < Config.HEADER_SIZE:
            raise TruncatedInputError('header', Config.HEADER_SIZE, len(header))

        animation_size, sound_size, frame_count = unpack_from('<IIH', header, 4)
        logger.debug(
            "Header: animation=%d bytes, sound=%d bytes, frames=%d",
            animation_size, sound_size, frame_count,
        )

        animation_data = _read_up_to(fp, animation_size)
        if len(animation_data) < animation_size:
            raise TruncatedInputError('animation section', animation_size, len(animation_data))

        sound_needed = sound_size + Config.SOUND_MARGIN
        sound_data = _read_up_to(fp, sound_needed)
        if len(sound_data) < sound_needed:
            if strict:
                raise TruncatedInputError('sound section', sound_needed, len(sound_data))
            logger.warning(
                "Sound section short by %d bytes, continuing without strict margin",
                sound_needed - len(sound_data),
            )

        animation = _AnimationDecoder(animation_data, frame_count)
        decoded_frames = animation.decode()

        triggers, frame_speed, sound_speed, channels = _parse_sound_section(sound_data, frame_count)
        logger.debug(
            "Sound: frame speed=%d, sound speed=%d, channel sizes=%s",
            frame_speed, sound_speed, [len(channel) for channel in channels],
        )

        frames = [
            Frame(layers, flags, sound)
            for (flags, layers), sound in zip(decoded_frames, triggers)
        ]

        timestamp = unpack_from('<I', header, 154)[0]

        return Flipnote(
            frames=frames,
            channels=channels,
            frame_speed=frame_speed,
            sound_speed=sound_speed,
            locked=unpack_from('<H', header, 16)[0] != 0,
            creator_name=_decode_name(header[20:42]),
            last_editor_name=_decode_name(header[42:64]),
            user_name=_decode_name(header[64:86]),
            creator_id=unpack_from('<Q', header, 86)[0],
            last_editor_id=unpack_from('<Q', header, 94)[0],
            previous_editor_id=unpack_from('<Q', header, 138)[0],
            raw_filename=header[102:120],
            raw_original_filename=header[120:138],
            date=EPOCH + timedelta(seconds=timestamp),
            thumbnail=decode_thumbnail(
                header[Config.THUMBNAIL_OFFSET:Config.THUMBNAIL_OFFSET + Config.THUMBNAIL_SIZE]
            ),
            thumbnail_frame_index=unpack_from('<H', header, 0x12)[0],
            looped=animation.looped,
        )
