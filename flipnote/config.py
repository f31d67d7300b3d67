"""
Format constants and lookup tables for the Flipnote decoder.
"""


class Config:
    """Configuration constants for the Flipnote container format."""

    # Container layout
    MAGIC = b'PARA'
    HEADER_SIZE = 0x6A0
    SOUND_MARGIN = 65536  # Extra bytes read past the declared sound length
    THUMBNAIL_OFFSET = 0xA0
    THUMBNAIL_SIZE = 0x600

    # Frame geometry
    WIDTH = 256
    HEIGHT = 192
    LAYER_COUNT = 2
    THUMBNAIL_WIDTH = 64
    THUMBNAIL_HEIGHT = 48

    # Audio
    CHANNEL_COUNT = 4
    AUDIO_FREQUENCY = 8184.0  # Hz

    # Seconds per frame, indexed by the speed setting byte
    SPEED_TABLE = (
        1.0 / 30.0250310083,
        1.0 / 20.1941106698,  # uncertain
        1.0 / 12.0173521182,
        1.0 / 6.0085185544,
        1.0 / 4.0057530563,
        1.0 / 2.0027981429,  # uncertain
        1.0 / 1.0014343461,
        1.0 / 0.5007253346,
    )

    IMA_INDEX_TABLE = (
        -1, -1, -1, -1, 2, 4, 6, 8,
        -1, -1, -1, -1, 2, 4, 6, 8,
    )

    IMA_STEP_TABLE = (
        7, 8, 9, 10, 11, 12, 13, 14, 16, 17,
        19, 21, 23, 25, 28, 31, 34, 37, 41, 45,
        50, 55, 60, 66, 73, 80, 88, 97, 107, 118,
        130, 143, 157, 173, 190, 209, 230, 253, 279, 307,
        337, 371, 408, 449, 494, 544, 598, 658, 724, 796,
        876, 963, 1060, 1166, 1282, 1411, 1552, 1707, 1878, 2066,
        2272, 2499, 2749, 3024, 3327, 3660, 4026, 4428, 4871, 5358,
        5894, 6484, 7132, 7845, 8630, 9493, 10442, 11487, 12635, 13899,
        15289, 16818, 18500, 20350, 22385, 24623, 27086, 29794, 32767,
    )

    # Palettes (RGB)
    ANIMATION_PALETTE = (
        (0, 0, 0),
        (255, 255, 255),
        (255, 0, 0),
        (0, 0, 255),
    )

    THUMBNAIL_PALETTE = (
        (255, 255, 255),
        (82, 82, 82),
        (255, 255, 255),
        (165, 165, 165),
        (255, 0, 0),
        (127, 0, 0),
        (255, 127, 127),
        (0, 255, 0),
        (0, 0, 255),
        (0, 0, 127),
        (127, 127, 255),
        (0, 255, 0),
        (255, 0, 255),
        (0, 255, 0),
        (0, 255, 0),
        (0, 255, 0),
    )
