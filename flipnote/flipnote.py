from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
from PIL import Image

from .audio import PcmAudio, AdpcmDecoder, channel_sample_rate, decode_channels, mix_channels
from .config import Config
from .frame import Frame


def format_filename(raw: bytes) -> str:
    """
    Render an 18-byte packed filename field as text.

    The field holds 3 bytes shown as hex, 13 ASCII characters and a
    little-endian edit counter, e.g. ``F78DA8_14768882B56B8_030``.
    """
    prefix = raw[:3].hex().upper()
    middle = raw[3:16].decode('ascii', errors='replace')
    counter = int.from_bytes(raw[16:18], 'little')
    return f"{prefix}_{middle}_{counter:03d}"


def _palette_image(indices: np.ndarray, palette: Sequence[Tuple[int, int, int]]) -> Image.Image:
    height, width = indices.shape
    img = Image.frombytes('P', (width, height), np.ascontiguousarray(indices, dtype=np.uint8).tobytes())
    img.putpalette([channel for color in palette for channel in color])
    return img


class Flipnote(object):
    """
    A fully decoded Flipnote animation.

    Holds the header metadata, the decoded frames, the raw bytes of the four
    sound channels and the thumbnail. Instances are read-only; audio and
    composited images are derived on request.
    """

    @property
    def frames(self) -> Tuple[Frame, ...]:
        return self._frames

    @property
    def total_frames(self) -> int:
        return len(self._frames)

    @property
    def channels(self) -> Tuple[bytes, ...]:
        """Raw ADPCM bytes of the four sound channels (0 is the soundtrack)."""
        return self._channels

    @property
    def frame_speed(self) -> int:
        return self._frame_speed

    @property
    def sound_speed(self) -> int:
        """Speed setting the soundtrack was recorded at."""
        return self._sound_speed

    @property
    def frame_duration(self) -> float:
        """Seconds each frame is displayed for."""
        return Config.SPEED_TABLE[self._frame_speed]

    @property
    def sound_duration(self) -> float:
        return Config.SPEED_TABLE[self._sound_speed]

    @property
    def frame_rate(self) -> float:
        return 1.0 / self.frame_duration

    @property
    def sample_rate(self) -> int:
        """Rate the decoded channels play at on the animation timeline."""
        return channel_sample_rate(self._frame_speed, self._sound_speed)

    @property
    def locked(self) -> bool:
        return self._locked

    @property
    def looped(self) -> bool:
        return self._looped

    @property
    def creator_name(self) -> str:
        return self._creator_name

    @property
    def last_editor_name(self) -> str:
        return self._last_editor_name

    @property
    def user_name(self) -> str:
        return self._user_name

    @property
    def creator_id(self) -> int:
        return self._creator_id

    @property
    def last_editor_id(self) -> int:
        return self._last_editor_id

    @property
    def previous_editor_id(self) -> int:
        return self._previous_editor_id

    @property
    def raw_filename(self) -> bytes:
        return self._raw_filename

    @property
    def raw_original_filename(self) -> bytes:
        return self._raw_original_filename

    @property
    def filename(self) -> str:
        return format_filename(self._raw_filename)

    @property
    def original_filename(self) -> str:
        return format_filename(self._raw_original_filename)

    @property
    def date(self) -> datetime:
        """Creation time (UTC)."""
        return self._date

    @property
    def thumbnail(self) -> np.ndarray:
        """(48, 64) uint8 array of indices into the thumbnail palette."""
        return self._thumbnail

    @property
    def thumbnail_frame_index(self) -> int:
        return self._thumbnail_frame_index

    @property
    def metadata(self) -> Dict:
        """Header metadata as a plain dictionary."""
        return {
            'CreatorName': self._creator_name,
            'LastEditorName': self._last_editor_name,
            'UserName': self._user_name,
            'CreatorId': f"{self._creator_id:016X}",
            'LastEditorId': f"{self._last_editor_id:016X}",
            'PreviousEditorId': f"{self._previous_editor_id:016X}",
            'Filename': self.filename,
            'OriginalFilename': self.original_filename,
            'Date': self._date.isoformat(),
            'Locked': self._locked,
            'Looped': self._looped,
            'FrameCount': self.total_frames,
            'FrameSpeed': self._frame_speed,
            'SoundSpeed': self._sound_speed,
            'ThumbnailFrameIndex': self._thumbnail_frame_index,
        }

    def __init__(
        self,
        frames: Sequence[Frame],
        channels: Sequence[bytes],
        frame_speed: int,
        sound_speed: int,
        locked: bool,
        creator_name: str,
        last_editor_name: str,
        user_name: str,
        creator_id: int,
        last_editor_id: int,
        previous_editor_id: int,
        raw_filename: bytes,
        raw_original_filename: bytes,
        date: datetime,
        thumbnail: np.ndarray,
        thumbnail_frame_index: int = 0,
        looped: bool = False,
    ):
        """
        Initialize Flipnote.

        Args:
            frames: Decoded frames in display order
            channels: Raw bytes of the four sound channels
            frame_speed: Animation speed setting (index into SPEED_TABLE)
            sound_speed: Speed setting the soundtrack was recorded at
            locked: Whether the author locked the flipnote against editing
            creator_name: Name of the original author
            last_editor_name: Name of the last author to save the file
            user_name: Name of the owner of the file
            creator_id: Id of the original author
            last_editor_id: Id of the last editor
            previous_editor_id: Id of the editor before the last one
            raw_filename: 18-byte packed current filename
            raw_original_filename: 18-byte packed original filename
            date: Creation timestamp
            thumbnail: (48, 64) array of thumbnail palette indices
            thumbnail_frame_index: Frame the thumbnail was taken from
            looped: Whether playback loops
        """
        if len(channels) != Config.CHANNEL_COUNT:
            raise ValueError(f"Expected {Config.CHANNEL_COUNT} sound channels, got {len(channels)}")
        if not 0 <= frame_speed < len(Config.SPEED_TABLE):
            raise ValueError(f"Frame speed out of range: {frame_speed}")
        if not 0 <= sound_speed < len(Config.SPEED_TABLE):
            raise ValueError(f"Sound speed out of range: {sound_speed}")

        self._frames = tuple(frames)
        self._channels = tuple(bytes(channel) for channel in channels)
        self._frame_speed = frame_speed
        self._sound_speed = sound_speed
        self._locked = locked
        self._looped = looped
        self._creator_name = creator_name
        self._last_editor_name = last_editor_name
        self._user_name = user_name
        self._creator_id = creator_id
        self._last_editor_id = last_editor_id
        self._previous_editor_id = previous_editor_id
        self._raw_filename = bytes(raw_filename)
        self._raw_original_filename = bytes(raw_original_filename)
        self._date = date
        self._thumbnail = np.array(thumbnail, dtype=np.uint8)
        self._thumbnail.setflags(write=False)
        self._thumbnail_frame_index = thumbnail_frame_index

    def composed_frames(self) -> List[np.ndarray]:
        """Every frame composited to palette indices, in display order."""
        return [frame.compose() for frame in self._frames]

    def channel_pcm(self, channel_id: int) -> PcmAudio:
        """
        Decode one sound channel on its own.

        Args:
            channel_id: 0 for the soundtrack, 1-3 for sound effects

        Returns:
            PcmAudio with the channel's samples and the timeline sample rate
        """
        samples = AdpcmDecoder().decode(self._channels[channel_id])
        samples.setflags(write=False)
        return PcmAudio(samples, self.sample_rate)

    def mixed_pcm(self, saturate: bool = False) -> PcmAudio:
        """
        Decode and mix all four channels onto the animation timeline.

        Args:
            saturate: Clip overlapping channels instead of wrapping

        Returns:
            PcmAudio with the mixed samples and their sample rate
        """
        decoded = decode_channels(self._channels)
        samples = mix_channels(
            decoded,
            [frame.sound for frame in self._frames],
            self.sample_rate,
            self.frame_duration,
            saturate=saturate,
        )
        samples.setflags(write=False)
        return PcmAudio(samples, self.sample_rate)

    def get_frame_image(
        self,
        frame_number: int,
        scale: Union[int, float] = 1,
        target_width: Optional[int] = None,
        target_height: Optional[int] = None,
    ) -> Image.Image:
        """
        Get a paletted Pillow Image of a frame.

        Args:
            frame_number: Frame number (1-indexed)
            scale: Optional scale factor
            target_width: Optional target width
            target_height: Optional target height

        Returns:
            PIL Image in mode 'P' over the animation palette
        """
        if frame_number <= 0 or frame_number > self.total_frames:
            raise IndexError(f"Frame number out of range: {frame_number}")

        img = _palette_image(self._frames[frame_number - 1].compose(), Config.ANIMATION_PALETTE)
        return self._resize(img, scale=scale, target_width=target_width, target_height=target_height)

    def get_thumbnail_image(self, scale: Union[int, float] = 1) -> Image.Image:
        img = _palette_image(self._thumbnail, Config.THUMBNAIL_PALETTE)
        return self._resize(img, scale=scale)

    def _resize(
        self,
        img: Image.Image,
        scale: Union[int, float] = 1,
        target_width: Optional[int] = None,
        target_height: Optional[int] = None,
    ) -> Image.Image:
        if target_width is not None and target_height is not None:
            return img.resize((target_width, target_height), Image.NEAREST)
        elif target_width is not None:
            new_height = int(img.height * target_width / img.width)
            return img.resize((target_width, new_height), Image.NEAREST)
        elif target_height is not None:
            new_width = int(img.width * target_height / img.height)
            return img.resize((new_width, target_height), Image.NEAREST)
        elif scale != 1:
            return img.resize((int(img.width * scale), int(img.height * scale)), Image.NEAREST)
        return img

    def __repr__(self):
        return f"<Flipnote {self.filename} frames={self.total_frames} speed={self._frame_speed}>"
