"""Planar frame data model and frame-pair validation.

A :class:`Frame` is an ordered triple of :class:`Plane` objects (Y, U, V).
Each plane wraps a 2-D numpy array whose rows may be padded: the array has
shape ``(height, stride)`` and only the first ``width`` columns are visible.

Samples are stored either in 8-bit (``uint8``) or 16-bit (``uint16``) cells.
The declared bit depth of a comparison must agree with that storage width,
see :func:`validate_frame_pair`.
"""

from dataclasses import dataclass
from enum import Enum

import numpy as np

from av_metrics.errors import InputMismatch, MalformedInput

SUPPORTED_DTYPES = (np.dtype(np.uint8), np.dtype(np.uint16))


class ChromaSampling(Enum):
    """Chroma subsampling mode of a video."""

    CS420 = "420"
    CS422 = "422"
    CS444 = "444"
    CS400 = "400"

    @property
    def chroma_weight(self) -> float:
        """Visual weight of each chroma plane relative to luma."""
        return _CHROMA_WEIGHTS[self]

    @property
    def decimation(self) -> tuple[int, int]:
        """Horizontal and vertical chroma decimation shifts ``(xdec, ydec)``."""
        return _DECIMATION[self]

    def chroma_plane_size(self, width: int, height: int) -> tuple[int, int]:
        """Return the ``(width, height)`` of a chroma plane for a luma size.

        Monochrome video still carries placeholder chroma planes; they are
        sized as for 4:2:0.
        """
        xdec, ydec = self.decimation
        return (width + xdec) >> xdec, (height + ydec) >> ydec


_CHROMA_WEIGHTS = {
    ChromaSampling.CS420: 0.25,
    ChromaSampling.CS422: 0.5,
    ChromaSampling.CS444: 1.0,
    ChromaSampling.CS400: 0.0,
}

_DECIMATION = {
    ChromaSampling.CS420: (1, 1),
    ChromaSampling.CS422: (1, 0),
    ChromaSampling.CS444: (0, 0),
    ChromaSampling.CS400: (1, 1),
}


class Plane:
    """A single color channel's sample grid."""

    def __init__(self, data: np.ndarray, width: int | None = None) -> None:
        """Wrap a sample array.

        Args:
            data: Array of shape ``(height, stride)`` with dtype ``uint8``
                or ``uint16``.
            width: Number of visible columns. Defaults to the stride.

        Raises:
            MalformedInput: If the array layout is not supported.
        """
        if data.ndim != 2:
            msg = f"Plane data must be 2-D, got shape {data.shape}"
            raise MalformedInput(msg)
        if data.dtype not in SUPPORTED_DTYPES:
            msg = f"Unsupported sample type {data.dtype}; expected uint8 or uint16"
            raise MalformedInput(msg)
        stride = data.shape[1]
        if width is None:
            width = stride
        if width < 0 or width > stride:
            msg = f"Plane width {width} exceeds stride {stride}"
            raise MalformedInput(msg)
        self.data = data
        self.width = width

    @property
    def height(self) -> int:
        return self.data.shape[0]

    @property
    def stride(self) -> int:
        return self.data.shape[1]

    @property
    def sample_width(self) -> int:
        """Bytes used to store one sample (1 or 2)."""
        return self.data.dtype.itemsize

    def visible(self) -> np.ndarray:
        """Return a ``(height, width)`` view of the visible samples."""
        return self.data[:, : self.width]

    def __repr__(self) -> str:
        return (
            f"Plane(width={self.width}, height={self.height}, "
            f"stride={self.stride}, dtype={self.data.dtype})"
        )


@dataclass(frozen=True)
class Frame:
    """An ordered (Y, U, V) triple of planes."""

    planes: tuple[Plane, Plane, Plane]

    def __post_init__(self) -> None:
        object.__setattr__(self, "planes", tuple(self.planes))
        if len(self.planes) != 3:
            msg = f"A frame needs exactly 3 planes, got {len(self.planes)}"
            raise MalformedInput(msg)
        dtypes = {plane.data.dtype for plane in self.planes}
        if len(dtypes) != 1:
            msg = "All planes of a frame must share one sample type"
            raise MalformedInput(msg)

    @classmethod
    def from_arrays(cls, y: np.ndarray, u: np.ndarray, v: np.ndarray) -> "Frame":
        """Build a frame from three unpadded sample arrays."""
        return cls((Plane(y), Plane(u), Plane(v)))

    @property
    def sample_width(self) -> int:
        return self.planes[0].sample_width


def validate_frame_pair(frame1: Frame, frame2: Frame, bit_depth: int) -> None:
    """Check that two frames can be compared at the given bit depth.

    An 8-bit storage cell must carry a bit depth of at most 8, and a 16-bit
    cell a bit depth above 8. Every plane index must have identical
    dimensions in both frames.

    Args:
        frame1: Reference frame.
        frame2: Distorted frame.
        bit_depth: Declared bit depth of both frames.

    Raises:
        InputMismatch: If the frames cannot be compared.
    """
    for frame in (frame1, frame2):
        width = frame.sample_width
        if (width == 1 and bit_depth > 8) or (width == 2 and bit_depth <= 8):
            raise InputMismatch("Bit depths does not match pixel width")

    if frame1.sample_width != frame2.sample_width:
        raise InputMismatch("Pixel widths do not match")

    for plane1, plane2 in zip(frame1.planes, frame2.planes):
        if plane1.width != plane2.width or plane1.height != plane2.height:
            raise InputMismatch("Video resolution does not match")
