"""Shared test fixtures and helpers.

Provides factories for synthetic planes, frames, Y4M files and images so
each test module can build exactly the inputs it needs.
"""

from collections.abc import Callable, Sequence
from pathlib import Path

import numpy as np
import pytest
from PIL import Image

from av_metrics.frame import ChromaSampling, Frame, Plane
from av_metrics.video import VideoDetails

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def textured_samples(
    width: int,
    height: int,
    bit_depth: int = 8,
    seed: int = 0,
) -> np.ndarray:
    """Return a reproducible noisy gradient with values inside the bit depth."""
    rng = np.random.default_rng(seed)
    sample_max = (1 << bit_depth) - 1
    gradient = np.add.outer(np.arange(height), np.arange(width)) * (sample_max / (width + height))
    noise = rng.integers(0, max(sample_max // 8, 1), size=(height, width))
    samples = np.clip(gradient * 0.75 + noise, 0, sample_max)
    dtype = np.uint16 if bit_depth > 8 else np.uint8
    return samples.astype(dtype)


def build_frame(
    width: int = 64,
    height: int = 64,
    bit_depth: int = 8,
    chroma_sampling: ChromaSampling = ChromaSampling.CS420,
    seed: int = 0,
    offset: int = 0,
) -> Frame:
    """Build a textured frame, optionally adding a uniform offset to every sample."""
    chroma_width, chroma_height = chroma_sampling.chroma_plane_size(width, height)
    planes = []
    for idx, (w, h) in enumerate(
        [(width, height), (chroma_width, chroma_height), (chroma_width, chroma_height)]
    ):
        samples = textured_samples(w, h, bit_depth, seed=seed * 3 + idx)
        if offset:
            sample_max = (1 << bit_depth) - 1
            samples = np.clip(samples.astype(np.int64) + offset, 0, sample_max).astype(
                samples.dtype
            )
        planes.append(Plane(samples))
    return Frame(tuple(planes))  # type: ignore[arg-type]


def video_details(
    width: int = 64,
    height: int = 64,
    bit_depth: int = 8,
    chroma_sampling: ChromaSampling = ChromaSampling.CS420,
) -> VideoDetails:
    return VideoDetails(
        width=width,
        height=height,
        bit_depth=bit_depth,
        chroma_sampling=chroma_sampling,
    )


def write_y4m_file(
    path: Path,
    frames: Sequence[Frame],
    width: int,
    height: int,
    colorspace: str = "420jpeg",
    bit_depth: int = 8,
) -> Path:
    """Write frames as a YUV4MPEG2 file and return its path."""
    path.parent.mkdir(parents=True, exist_ok=True)
    dtype = np.dtype("<u2") if bit_depth > 8 else np.dtype(np.uint8)
    with open(path, "wb") as f:
        f.write(f"YUV4MPEG2 W{width} H{height} F25:1 Ip A1:1 C{colorspace}\n".encode())
        for frame in frames:
            f.write(b"FRAME\n")
            planes = frame.planes[:1] if colorspace.startswith("mono") else frame.planes
            for plane in planes:
                f.write(plane.visible().astype(dtype).tobytes())
    return path


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def make_frame() -> Callable[..., Frame]:
    """Factory for textured frames (see :func:`build_frame`)."""
    return build_frame


@pytest.fixture
def make_details() -> Callable[..., VideoDetails]:
    """Factory for :class:`VideoDetails`."""
    return video_details


@pytest.fixture
def make_samples() -> Callable[..., np.ndarray]:
    """Factory for textured 2-D sample arrays."""
    return textured_samples


@pytest.fixture
def write_y4m() -> Callable[..., Path]:
    """Factory writing frames to a ``.y4m`` file."""
    return write_y4m_file


@pytest.fixture
def test_image(tmp_path: Path) -> Path:
    """A small textured RGB PNG."""
    rng = np.random.default_rng(7)
    pixels = rng.integers(0, 256, size=(48, 40, 3), dtype=np.uint8)
    path = tmp_path / "image.png"
    Image.fromarray(pixels).save(path)
    return path


@pytest.fixture
def y4m_pair(tmp_path: Path) -> tuple[Path, Path]:
    """Reference and distorted 3-frame 4:2:0 Y4M clips."""
    reference = [build_frame(48, 32, seed=i) for i in range(3)]
    distorted = [build_frame(48, 32, seed=i, offset=6) for i in range(3)]
    return (
        write_y4m_file(tmp_path / "ref.y4m", reference, 48, 32),
        write_y4m_file(tmp_path / "dist.y4m", distorted, 48, 32),
    )
