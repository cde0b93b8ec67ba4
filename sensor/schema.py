"""Schema mask bits, artifact kinds and their published names."""

from __future__ import annotations

from enum import Enum, IntFlag
from typing import Optional

from utils.settings import DEFAULT_SCHEMA_MASK


class SchemaMask(IntFlag):
    """Bits selecting what a PCIC stream delivers (vendor schema layout)."""

    NONE = 0
    IMG_RDIS = 1 << 0
    IMG_AMP = 1 << 1
    IMG_RAMP = 1 << 2
    IMG_CART = 1 << 3
    IMG_UVEC = 1 << 4
    IMG_GRAY = 1 << 6
    IMG_DIS_NOISE = 1 << 11

    ALL_STREAMS = IMG_RDIS | IMG_AMP | IMG_RAMP | IMG_CART | IMG_GRAY | IMG_DIS_NOISE
    CALIBRATION_ONLY = IMG_UVEC

    def enables(self, bits: "SchemaMask") -> bool:
        return bits != SchemaMask.NONE and (self & bits) == bits


DEFAULT_MASK = SchemaMask(DEFAULT_SCHEMA_MASK)


class ArtifactKind(Enum):
    """
    One decodable image of a frame.

    ``value`` is the published name, ``mask`` the schema bit gating it
    (``None`` for kinds that are always delivered).
    """

    CONFIDENCE = ("confidence", None)
    XYZ = ("cloud", SchemaMask.IMG_CART)
    DISTANCE = ("distance", SchemaMask.IMG_RDIS)
    DISTANCE_NOISE = ("distance_noise", SchemaMask.IMG_DIS_NOISE)
    AMPLITUDE = ("amplitude", SchemaMask.IMG_AMP)
    RAW_AMPLITUDE = ("raw_amplitude", SchemaMask.IMG_RAMP)
    GRAY = ("gray_image", SchemaMask.IMG_GRAY)
    JPEG = ("rgb_image/compressed", None)
    UNIT_VECTORS = ("unit_vectors", SchemaMask.IMG_UVEC)

    def __init__(self, topic: str, mask: Optional[SchemaMask]) -> None:
        self.topic = topic
        self.mask = mask

    def enabled_by(self, mask: SchemaMask) -> bool:
        """Whether ``mask`` requests this kind; ungated kinds always are."""
        return self.mask is None or SchemaMask(mask).enables(self.mask)


EXTRINSICS_TOPIC = "extrinsics"

# Publish order of one streamed frame, extrinsics last
STREAM_ORDER = (
    ArtifactKind.CONFIDENCE,
    ArtifactKind.XYZ,
    ArtifactKind.DISTANCE,
    ArtifactKind.DISTANCE_NOISE,
    ArtifactKind.AMPLITUDE,
    ArtifactKind.RAW_AMPLITUDE,
    ArtifactKind.GRAY,
    ArtifactKind.JPEG,
)


def parse_mask(value: int | str) -> SchemaMask:
    """Accept an integer or ``"IMG_RDIS|IMG_AMP"`` style names."""
    if isinstance(value, str) and not value.strip().lstrip("-").isdigit():
        mask = SchemaMask.NONE
        for name in value.split("|"):
            name = name.strip().upper()
            if not name:
                continue
            try:
                mask |= SchemaMask[name]
            except KeyError:
                raise ValueError(f"Unknown schema bit: {name}") from None
        return mask
    return SchemaMask(int(value))
