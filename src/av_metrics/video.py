"""Generic frame/video aggregation framework.

Every metric is a :class:`VideoMetric` with two pure operations:

- :meth:`VideoMetric.process_frame` turns one frame pair into a per-frame
  :class:`PlanarMetrics` (unweighted, not yet log-converted).
- :meth:`VideoMetric.aggregate_frame_results` folds the ordered per-frame
  results of a whole video into one video-level :class:`PlanarMetrics`.

:meth:`VideoMetric.process_video` drives both over two decoders in
lock-step. Frames are processed one at a time; inside a frame the three
planes are computed in parallel on a small thread pool and joined before
the next frame is requested.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass
from typing import Protocol

from av_metrics.errors import InputMismatch, MalformedInput
from av_metrics.frame import ChromaSampling, Frame, Plane

ProgressCallback = Callable[[int], None]


@dataclass
class PlanarMetrics:
    """Per-plane scores plus their weighted average."""

    y: float
    u: float
    v: float
    avg: float

    def to_dict(self) -> dict[str, float]:
        return asdict(self)


@dataclass
class VideoDetails:
    """Static properties of a decoded video stream."""

    width: int
    height: int
    bit_depth: int
    chroma_sampling: ChromaSampling
    frame_rate: str | None = None


class Decoder(Protocol):
    """Pull-based source of decoded frames.

    ``read_video_frame`` returns ``None`` at end-of-stream and raises
    :class:`~av_metrics.errors.DecodeError` when a frame cannot be decoded.
    """

    def get_video_details(self) -> VideoDetails: ...

    def get_bit_depth(self) -> int: ...

    def read_video_frame(self) -> Frame | None: ...


def map_planes(
    func: Callable[[Plane, Plane, int], float],
    frame1: Frame,
    frame2: Frame,
) -> tuple[float, float, float]:
    """Run ``func(plane1, plane2, plane_index)`` for Y, U and V in parallel.

    The three calls share no mutable state. An exception in any of them is
    re-raised here after all three have finished, and no partial result is
    returned.
    """
    with ThreadPoolExecutor(max_workers=3) as executor:
        futures = [
            executor.submit(func, plane1, plane2, idx)
            for idx, (plane1, plane2) in enumerate(zip(frame1.planes, frame2.planes))
        ]
    y, u, v = (future.result() for future in futures)
    return y, u, v


class VideoMetric(ABC):
    """A metric that can be computed per frame and aggregated per video."""

    def __init__(self, cweight: float | None = None) -> None:
        """Initialize the metric.

        Args:
            cweight: Chroma weight used when averaging planes at video level.
                ``None`` means unweighted (1.0).
        """
        self.cweight = cweight

    @abstractmethod
    def process_frame(
        self,
        frame1: Frame,
        frame2: Frame,
        bit_depth: int,
        chroma_sampling: ChromaSampling,
    ) -> PlanarMetrics:
        """Compute the unweighted per-plane result for one frame pair."""

    @abstractmethod
    def aggregate_frame_results(self, metrics: Sequence[PlanarMetrics]) -> PlanarMetrics:
        """Combine all per-frame results of a video into one result."""

    def process_video(
        self,
        decoder1: Decoder,
        decoder2: Decoder,
        frame_limit: int | None = None,
        progress_callback: ProgressCallback | None = None,
    ) -> PlanarMetrics:
        """Compare two videos frame by frame.

        Args:
            decoder1: Reference video.
            decoder2: Distorted video.
            frame_limit: Stop after this many frames. ``None`` reads until
                either decoder reaches end-of-stream.
            progress_callback: Called with the number of frames processed so
                far after each frame.

        Returns:
            Video-level metrics.

        Raises:
            InputMismatch: If the videos or any frame pair cannot be compared.
            MalformedInput: If no frame could be read.
        """
        bit_depth = decoder1.get_bit_depth()
        if bit_depth != decoder2.get_bit_depth():
            raise InputMismatch("Bit depths do not match")
        chroma_sampling = decoder1.get_video_details().chroma_sampling
        if chroma_sampling != decoder2.get_video_details().chroma_sampling:
            raise InputMismatch("Chroma samplings do not match")

        results: list[PlanarMetrics] = []
        while frame_limit is None or len(results) < frame_limit:
            frame1 = decoder1.read_video_frame()
            frame2 = decoder2.read_video_frame()
            if frame1 is None or frame2 is None:
                break
            results.append(self.process_frame(frame1, frame2, bit_depth, chroma_sampling))
            if progress_callback is not None:
                progress_callback(len(results))

        if not results:
            msg = "No readable frames found in one or more input files"
            raise MalformedInput(msg)

        return self.aggregate_frame_results(results)
