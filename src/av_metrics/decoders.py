"""Ready-made decoders that feed frames to the metric framework.

- :class:`Y4MDecoder` reads uncompressed YUV4MPEG2 (``.y4m``) streams.
- :class:`ImageDecoder` treats a still image as a one-frame video.
- :class:`FrameListDecoder` serves frames that are already in memory.

All decoders return ``None`` from ``read_video_frame`` at end-of-stream and
raise :class:`~av_metrics.errors.DecodeError` on corrupt input.
"""

import re
from collections.abc import Iterable
from pathlib import Path
from typing import BinaryIO

import numpy as np
from PIL import Image

from av_metrics.errors import DecodeError, MalformedInput
from av_metrics.frame import ChromaSampling, Frame, Plane
from av_metrics.video import Decoder, VideoDetails

Y4M_MAGIC = b"YUV4MPEG2"
FRAME_MAGIC = b"FRAME"
# Header lines are short; anything longer is not a Y4M stream.
MAX_HEADER_LENGTH = 1024

_COLORSPACE_RE = re.compile(r"^(420|422|444|mono)(jpeg|paldv|mpeg2)?(?:p?(\d+))?$")

_COLORSPACES = {
    "420": ChromaSampling.CS420,
    "422": ChromaSampling.CS422,
    "444": ChromaSampling.CS444,
    "mono": ChromaSampling.CS400,
}


def parse_colorspace(tag: str) -> tuple[ChromaSampling, int]:
    """Parse a Y4M ``C`` tag value such as ``420jpeg`` or ``422p10``.

    Returns:
        ``(chroma_sampling, bit_depth)``

    Raises:
        MalformedInput: If the colorspace is not supported.
    """
    match = _COLORSPACE_RE.match(tag)
    if not match:
        msg = f"Unsupported Y4M colorspace: {tag!r}"
        raise MalformedInput(msg)
    sampling = _COLORSPACES[match.group(1)]
    bit_depth = int(match.group(3)) if match.group(3) else 8
    if not 8 <= bit_depth <= 16:
        msg = f"Unsupported Y4M bit depth: {bit_depth}"
        raise MalformedInput(msg)
    return sampling, bit_depth


def _placeholder_chroma(width: int, height: int, dtype: np.dtype, bit_depth: int) -> Plane:
    """Mid-grey chroma plane carried by monochrome frames."""
    return Plane(np.full((height, width), 1 << (bit_depth - 1), dtype=dtype))


class Y4MDecoder:
    """Decoder for YUV4MPEG2 streams."""

    def __init__(self, source: Path | str | BinaryIO) -> None:
        """Open a Y4M stream and parse its header.

        Args:
            source: Path to a ``.y4m`` file or an open binary file object.

        Raises:
            FileNotFoundError: If the path does not exist.
            MalformedInput: If the stream header is invalid.
        """
        if isinstance(source, (str, Path)):
            path = Path(source)
            if not path.exists():
                msg = f"Video not found: {path}"
                raise FileNotFoundError(msg)
            self._file: BinaryIO = open(path, "rb")
            self._owns_file = True
        else:
            self._file = source
            self._owns_file = False

        try:
            self._details = self._read_header()
        except MalformedInput:
            self.close()
            raise

        details = self._details
        self._dtype = np.dtype("<u2") if details.bit_depth > 8 else np.dtype(np.uint8)
        self._native = np.dtype(np.uint16) if details.bit_depth > 8 else np.dtype(np.uint8)
        self._chroma_size = details.chroma_sampling.chroma_plane_size(
            details.width, details.height
        )

    def _read_header(self) -> VideoDetails:
        line = self._file.readline(MAX_HEADER_LENGTH)
        if not line.startswith(Y4M_MAGIC) or not line.endswith(b"\n"):
            msg = "Not a YUV4MPEG2 stream"
            raise MalformedInput(msg)

        width = height = None
        frame_rate = None
        chroma_sampling, bit_depth = ChromaSampling.CS420, 8
        for token in line[len(Y4M_MAGIC) :].decode("ascii", errors="replace").split():
            key, value = token[0], token[1:]
            if key in ("W", "H"):
                try:
                    size = int(value)
                except ValueError as e:
                    msg = f"Invalid Y4M frame dimension: {token!r}"
                    raise MalformedInput(msg) from e
                if key == "W":
                    width = size
                else:
                    height = size
            elif key == "F":
                frame_rate = value
            elif key == "C":
                chroma_sampling, bit_depth = parse_colorspace(value)

        if not width or not height or width < 0 or height < 0:
            msg = "Y4M header is missing valid frame dimensions"
            raise MalformedInput(msg)

        return VideoDetails(
            width=width,
            height=height,
            bit_depth=bit_depth,
            chroma_sampling=chroma_sampling,
            frame_rate=frame_rate,
        )

    def get_video_details(self) -> VideoDetails:
        return self._details

    def get_bit_depth(self) -> int:
        return self._details.bit_depth

    def read_video_frame(self) -> Frame | None:
        """Read the next frame, or return ``None`` at end-of-stream.

        Raises:
            DecodeError: If the frame header or data is truncated or invalid.
        """
        header = self._file.readline(MAX_HEADER_LENGTH)
        if not header:
            return None
        if not header.startswith(FRAME_MAGIC):
            msg = f"Invalid Y4M frame header: {header[:16]!r}"
            raise DecodeError(msg)

        details = self._details
        luma = self._read_plane(details.width, details.height)
        chroma_width, chroma_height = self._chroma_size
        if details.chroma_sampling is ChromaSampling.CS400:
            u = _placeholder_chroma(chroma_width, chroma_height, self._native, details.bit_depth)
            v = _placeholder_chroma(chroma_width, chroma_height, self._native, details.bit_depth)
        else:
            u = self._read_plane(chroma_width, chroma_height)
            v = self._read_plane(chroma_width, chroma_height)
        return Frame((luma, u, v))

    def _read_plane(self, width: int, height: int) -> Plane:
        size = width * height * self._dtype.itemsize
        raw = self._file.read(size)
        if len(raw) < size:
            msg = f"Truncated Y4M frame: expected {size} bytes, got {len(raw)}"
            raise DecodeError(msg)
        samples = np.frombuffer(raw, dtype=self._dtype).reshape(height, width)
        return Plane(samples.astype(self._native))

    def close(self) -> None:
        if self._owns_file:
            self._file.close()

    def __enter__(self) -> "Y4MDecoder":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


class ImageDecoder:
    """Still image decoded with Pillow as a one-frame 8-bit video.

    Color images are converted to 4:4:4 YCbCr; grayscale images become 4:0:0
    with placeholder chroma planes.
    """

    def __init__(self, image_path: Path | str) -> None:
        """Load the image.

        Args:
            image_path: Path to any image format Pillow can read.

        Raises:
            FileNotFoundError: If the image does not exist.
            DecodeError: If Pillow cannot decode the image.
        """
        image_path = Path(image_path)
        if not image_path.exists():
            msg = f"Image not found: {image_path}"
            raise FileNotFoundError(msg)

        try:
            img = Image.open(image_path)
            img.load()
        except OSError as e:
            msg = f"Failed to decode image {image_path}: {e}"
            raise DecodeError(msg) from e

        with img:
            if img.mode == "L":
                luma = np.asarray(img, dtype=np.uint8)
                height, width = luma.shape
                sampling = ChromaSampling.CS400
                chroma_width, chroma_height = sampling.chroma_plane_size(width, height)
                planes = (
                    Plane(np.ascontiguousarray(luma)),
                    _placeholder_chroma(chroma_width, chroma_height, np.dtype(np.uint8), 8),
                    _placeholder_chroma(chroma_width, chroma_height, np.dtype(np.uint8), 8),
                )
            else:
                ycbcr = np.asarray(img.convert("YCbCr"), dtype=np.uint8)
                height, width = ycbcr.shape[:2]
                sampling = ChromaSampling.CS444
                planes = tuple(  # type: ignore[assignment]
                    Plane(np.ascontiguousarray(ycbcr[:, :, idx])) for idx in range(3)
                )

        self._details = VideoDetails(
            width=width,
            height=height,
            bit_depth=8,
            chroma_sampling=sampling,
        )
        self._frame: Frame | None = Frame(planes)

    def get_video_details(self) -> VideoDetails:
        return self._details

    def get_bit_depth(self) -> int:
        return 8

    def read_video_frame(self) -> Frame | None:
        frame, self._frame = self._frame, None
        return frame


class FrameListDecoder:
    """Serves pre-decoded frames in order."""

    def __init__(self, frames: Iterable[Frame], details: VideoDetails) -> None:
        self._frames = iter(frames)
        self._details = details

    def get_video_details(self) -> VideoDetails:
        return self._details

    def get_bit_depth(self) -> int:
        return self._details.bit_depth

    def read_video_frame(self) -> Frame | None:
        return next(self._frames, None)


def open_decoder(path: Path | str) -> Decoder:
    """Open a decoder suited to the file: Y4M for ``.y4m``, Pillow otherwise."""
    path = Path(path)
    if path.suffix.lower() == ".y4m":
        return Y4MDecoder(path)
    return ImageDecoder(path)
