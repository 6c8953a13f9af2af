"""Tests for the video aggregation framework."""

import math

import pytest

from av_metrics.decoders import FrameListDecoder
from av_metrics.errors import InputMismatch, MalformedInput
from av_metrics.frame import ChromaSampling
from av_metrics.psnr_hvs import PsnrHvs, calculate_video_psnr_hvs
from av_metrics.ssim import MsSsim, Ssim, calculate_video_msssim, calculate_video_ssim
from av_metrics.video import PlanarMetrics, VideoMetric, map_planes


class CountingMetric(VideoMetric):
    """Records every frame it sees; aggregates by counting."""

    def __init__(self) -> None:
        super().__init__()
        self.seen: list[int] = []

    def process_frame(self, frame1, frame2, bit_depth, chroma_sampling) -> PlanarMetrics:
        self.seen.append(bit_depth)
        return PlanarMetrics(y=1.0, u=1.0, v=1.0, avg=0.0)

    def aggregate_frame_results(self, metrics) -> PlanarMetrics:
        return PlanarMetrics(y=len(metrics), u=0.0, v=0.0, avg=0.0)


def _decoders(make_frame, make_details, count: int, **kwargs):
    frames = [make_frame(32, 32, seed=i, **kwargs) for i in range(count)]
    details = make_details(32, 32, **kwargs)
    return FrameListDecoder(frames, details), FrameListDecoder(list(frames), details)


class TestMapPlanes:
    """Tests for the per-plane fork-join."""

    def test_results_in_plane_order(self, make_frame) -> None:
        frame = make_frame(32, 32)
        result = map_planes(lambda p1, p2, idx: float(idx * 10 + p1.width), frame, frame)
        assert result == (32.0, 16.0 + 10.0, 16.0 + 20.0)

    def test_exception_propagates(self, make_frame) -> None:
        frame = make_frame(32, 32)

        def task(plane1, plane2, idx):
            if idx == 2:
                raise RuntimeError("plane failed")
            return 0.0

        with pytest.raises(RuntimeError, match="plane failed"):
            map_planes(task, frame, frame)


class TestProcessVideo:
    """Tests for the frame loop."""

    def test_reads_until_end_of_stream(self, make_frame, make_details) -> None:
        decoder1, decoder2 = _decoders(make_frame, make_details, 4)
        metric = CountingMetric()
        result = metric.process_video(decoder1, decoder2)
        assert result.y == 4
        assert metric.seen == [8, 8, 8, 8]

    def test_stops_at_shorter_video(self, make_frame, make_details) -> None:
        details = make_details(32, 32)
        long = FrameListDecoder([make_frame(32, 32, seed=i) for i in range(5)], details)
        short = FrameListDecoder([make_frame(32, 32, seed=i) for i in range(2)], details)
        assert CountingMetric().process_video(long, short).y == 2

    def test_frame_limit(self, make_frame, make_details) -> None:
        decoder1, decoder2 = _decoders(make_frame, make_details, 5)
        assert CountingMetric().process_video(decoder1, decoder2, frame_limit=3).y == 3

    def test_progress_callback(self, make_frame, make_details) -> None:
        decoder1, decoder2 = _decoders(make_frame, make_details, 2)
        calls: list[int] = []
        CountingMetric().process_video(decoder1, decoder2, progress_callback=calls.append)
        assert calls == [1, 2]

    def test_no_frames_raises(self, make_details) -> None:
        details = make_details()
        with pytest.raises(MalformedInput, match="No readable frames"):
            CountingMetric().process_video(
                FrameListDecoder([], details), FrameListDecoder([], details)
            )

    def test_bit_depth_mismatch(self, make_frame, make_details) -> None:
        decoder1 = FrameListDecoder([make_frame()], make_details(bit_depth=8))
        decoder2 = FrameListDecoder([make_frame()], make_details(bit_depth=10))
        with pytest.raises(InputMismatch, match="Bit depths do not match"):
            CountingMetric().process_video(decoder1, decoder2)

    def test_chroma_sampling_mismatch(self, make_frame, make_details) -> None:
        decoder1 = FrameListDecoder([make_frame()], make_details())
        decoder2 = FrameListDecoder(
            [make_frame()], make_details(chroma_sampling=ChromaSampling.CS444)
        )
        with pytest.raises(InputMismatch, match="Chroma samplings do not match"):
            CountingMetric().process_video(decoder1, decoder2)

    def test_mismatching_frame_mid_stream(self, make_frame, make_details) -> None:
        details = make_details(32, 32)
        decoder1 = FrameListDecoder([make_frame(32, 32), make_frame(32, 32)], details)
        decoder2 = FrameListDecoder([make_frame(32, 32), make_frame(32, 24)], details)
        with pytest.raises(InputMismatch, match="resolution"):
            PsnrHvs().process_video(decoder1, decoder2)


class TestVideoMetrics:
    """End-to-end video comparisons through FrameListDecoder."""

    @pytest.mark.parametrize(
        "calculate", [calculate_video_psnr_hvs, calculate_video_ssim, calculate_video_msssim]
    )
    def test_identical_videos(self, make_frame, make_details, calculate) -> None:
        decoder1, decoder2 = _decoders(make_frame, make_details, 2)
        result = calculate(decoder1, decoder2)
        assert result.y > 40.0
        assert result.avg > 40.0

    @pytest.mark.parametrize(
        "calculate", [calculate_video_psnr_hvs, calculate_video_ssim, calculate_video_msssim]
    )
    def test_distortion_lowers_score(self, make_frame, make_details, calculate) -> None:
        details = make_details(32, 32)
        clean = [make_frame(32, 32, seed=1)]
        reference = [make_frame(32, 32, seed=1), make_frame(32, 32, seed=3)]
        degraded = [make_frame(32, 32, seed=1), make_frame(32, 32, seed=3, offset=8)]

        one = calculate(FrameListDecoder(clean, details), FrameListDecoder(clean, details))
        two = calculate(
            FrameListDecoder(reference, details), FrameListDecoder(degraded, details)
        )
        assert math.isfinite(two.y)
        assert two.y < one.y

    @pytest.mark.parametrize("metric_cls", [PsnrHvs, Ssim, MsSsim])
    def test_frame_order_does_not_matter(self, make_frame, make_details, metric_cls) -> None:
        details = make_details(32, 32)
        reference = [make_frame(32, 32, seed=i) for i in range(3)]
        distorted = [make_frame(32, 32, seed=i, offset=3 * (i + 1)) for i in range(3)]

        forward = metric_cls(0.25).process_video(
            FrameListDecoder(reference, details), FrameListDecoder(distorted, details)
        )
        backward = metric_cls(0.25).process_video(
            FrameListDecoder(reference[::-1], details),
            FrameListDecoder(distorted[::-1], details),
        )
        assert forward == backward

    def test_video_uses_chroma_weight_of_sampling(self, make_frame, make_details) -> None:
        """A 4:2:0 video weighs chroma at 0.25 when averaging planes."""
        details = make_details(32, 32)
        reference = [make_frame(32, 32, seed=1)]
        distorted = [make_frame(32, 32, seed=1, offset=5)]
        result = calculate_video_psnr_hvs(
            FrameListDecoder(reference, details), FrameListDecoder(distorted, details)
        )
        expected = PsnrHvs(0.25).process_video(
            FrameListDecoder(reference, details), FrameListDecoder(distorted, details)
        )
        assert result == expected
