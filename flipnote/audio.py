"""
Audio decoding for Flipnote sound channels.

Each channel is stored as 4-bit IMA-style ADPCM, two codes per byte with
the low nibble first. Channels are decoded independently and then mixed
onto the animation timeline according to the per-frame trigger flags.
"""

import logging
import math
from typing import List, NamedTuple, Sequence

import numpy as np

from .config import Config

logger = logging.getLogger(__name__)


class PcmAudio(NamedTuple):
    samples: np.ndarray  # int16, read-only
    sample_rate: int


class AdpcmDecoder(object):
    """
    Stateful ADPCM decoder for a single channel.

    The step size used for a code is the one derived from the step index
    *before* that code updated it.
    """

    index_table = Config.IMA_INDEX_TABLE
    step_table = Config.IMA_STEP_TABLE

    def __init__(self):
        self.reset()

    def reset(self) -> None:
        self.predictor = 0
        self.step_index = 0
        self.step = self.step_table[0]

    def decode(self, data: bytes) -> np.ndarray:
        """
        Decode a whole channel from a fresh state.

        Args:
            data: Raw channel bytes

        Returns:
            int16 numpy array with two samples per input byte
        """
        self.reset()
        samples: List[int] = []

        for byte in data:
            samples.append(self._decode_nibble(byte & 0x0F))
            samples.append(self._decode_nibble(byte >> 4))

        return np.array(samples, dtype=np.int16)

    def _decode_nibble(self, nibble: int) -> int:
        self.step_index += self.index_table[nibble]
        if self.step_index < 0:
            self.step_index = 0
        elif self.step_index >= len(self.step_table):
            self.step_index = len(self.step_table) - 1

        step = self.step
        diff = step >> 3
        if nibble & 4:
            diff += step
        if nibble & 2:
            diff += step >> 1
        if nibble & 1:
            diff += step >> 2

        if nibble & 8:
            self.predictor -= diff
        else:
            self.predictor += diff

        if self.predictor < -32768:
            self.predictor = -32768
        elif self.predictor > 32767:
            self.predictor = 32767

        self.step = self.step_table[self.step_index]
        return self.predictor


def decode_channels(channels: Sequence[bytes]) -> List[np.ndarray]:
    """Decode every channel, each with its own fresh decoder state."""
    return [AdpcmDecoder().decode(channel) for channel in channels]


def channel_sample_rate(frame_speed: int, sound_speed: int) -> int:
    """
    Playback rate of the decoded channels on the animation timeline.

    Sound recorded at one speed setting is resampled by the ratio of the
    two frame durations so it stays in sync with the animation.
    """
    ratio = Config.SPEED_TABLE[sound_speed] / Config.SPEED_TABLE[frame_speed]
    return int(Config.AUDIO_FREQUENCY * ratio)


def mix_channels(
    channels: Sequence[np.ndarray],
    triggers: Sequence[Sequence[bool]],
    sample_rate: int,
    frame_duration: float,
    saturate: bool = False,
) -> np.ndarray:
    """
    Mix decoded channels into a single PCM stream.

    Every channel triggered at a frame is added in starting at that frame's
    position on the timeline. Channel 0 keeps looping until at least the end
    of the buffer; other channels play one copy. The buffer grows when a
    channel runs past its end.

    Args:
        channels: Decoded int16 samples per channel
        triggers: One sequence of per-channel booleans per frame
        sample_rate: Output sample rate
        frame_duration: Seconds per frame
        saturate: Clip the sum to 16 bits instead of wrapping like the
            original hardware player

    Returns:
        int16 numpy array of mixed samples
    """
    length = int(math.ceil(sample_rate * len(triggers) * frame_duration))
    out = np.zeros(length, dtype=np.int32)

    pos = 0.0
    for frame_triggers in triggers:
        start = int(round(sample_rate * pos))
        remaining = len(out) - start

        for channel_id, samples in enumerate(channels):
            if not frame_triggers[channel_id] or len(samples) == 0:
                continue

            count = len(samples)
            if channel_id == 0 and remaining > count:
                count = remaining

            end = start + count
            if end > len(out):
                out = np.concatenate([out, np.zeros(end - len(out), dtype=np.int32)])

            out[start:end] += np.resize(samples, count).astype(np.int32)

        pos += frame_duration

    logger.debug("Mixed %d frames into %d samples at %d Hz", len(triggers), len(out), sample_rate)

    if saturate:
        return np.clip(out, -32768, 32767).astype(np.int16)
    # Wraps on overflow, matching 16-bit accumulation
    return out.astype(np.int16)
