"""Structural similarity (SSIM) and multi-scale SSIM (MS-SSIM).

SSIM is a full-reference metric: the distorted image is judged against an
undistorted reference using local luminance, contrast and structure
statistics. Local statistics are gathered with separable integer kernels
approximating a Gaussian, so all window moments are exact integers.

MS-SSIM repeats the computation on a five-level pyramid of 2x2 sums and
combines the contrast-structure terms of the finer levels with the full
SSIM of the coarsest one.

Scores are reported in dB as ``-10 * log10(1 - ssim)``; higher is better.
"""

import math
from collections.abc import Callable, Sequence

import numpy as np

from av_metrics.frame import ChromaSampling, Frame, Plane, validate_frame_pair
from av_metrics.video import (
    Decoder,
    PlanarMetrics,
    ProgressCallback,
    VideoMetric,
    map_planes,
)

SSIM_K1 = 0.01 * 0.01
SSIM_K2 = 0.03 * 0.03

SSIM_KERNEL_SHIFT = 8
MSSSIM_KERNEL_SHIFT = 10
MSSSIM_SCALES = 5

# From the original MS-SSIM paper
# (https://ece.uwaterloo.ca/~z70wang/publications/msssim.pdf).
# They do not add up to 1 because of rounding in the paper.
MS_WEIGHT = (0.0448, 0.2856, 0.3001, 0.2363, 0.1333)

# Per-pixel window moments, stored as rows of one array:
# sum(w*x), sum(w*y), sum(w*x*x), sum(w*x*y), sum(w*y*y), sum(w)
_MUX, _MUY, _X2, _XY, _Y2, _W = range(6)
_N_MOMENTS = 6


def calculate_video_ssim(
    decoder1: Decoder,
    decoder2: Decoder,
    frame_limit: int | None = None,
    progress_callback: ProgressCallback | None = None,
) -> PlanarMetrics:
    """Calculate the SSIM score between two videos. Higher is better."""
    cweight = decoder1.get_video_details().chroma_sampling.chroma_weight
    return Ssim(cweight).process_video(decoder1, decoder2, frame_limit, progress_callback)


def calculate_frame_ssim(
    frame1: Frame,
    frame2: Frame,
    bit_depth: int,
    chroma_sampling: ChromaSampling = ChromaSampling.CS444,
) -> PlanarMetrics:
    """Calculate the SSIM score between two frames. Higher is better."""
    result = Ssim().process_frame(frame1, frame2, bit_depth, chroma_sampling)
    return _convert_frame_result(result, chroma_sampling.chroma_weight)


def calculate_video_msssim(
    decoder1: Decoder,
    decoder2: Decoder,
    frame_limit: int | None = None,
    progress_callback: ProgressCallback | None = None,
) -> PlanarMetrics:
    """Calculate the MS-SSIM score between two videos. Higher is better.

    MS-SSIM is a variant of SSIM computed over subsampled versions of an
    image. It is designed to be a more accurate metric than SSIM.
    """
    cweight = decoder1.get_video_details().chroma_sampling.chroma_weight
    return MsSsim(cweight).process_video(decoder1, decoder2, frame_limit, progress_callback)


def calculate_frame_msssim(
    frame1: Frame,
    frame2: Frame,
    bit_depth: int,
    chroma_sampling: ChromaSampling = ChromaSampling.CS444,
) -> PlanarMetrics:
    """Calculate the MS-SSIM score between two frames. Higher is better."""
    result = MsSsim().process_frame(frame1, frame2, bit_depth, chroma_sampling)
    return _convert_frame_result(result, chroma_sampling.chroma_weight)


def _convert_frame_result(result: PlanarMetrics, cweight: float) -> PlanarMetrics:
    return PlanarMetrics(
        y=log10_convert(result.y, 1.0),
        u=log10_convert(result.u, 1.0),
        v=log10_convert(result.v, 1.0),
        avg=log10_convert(
            result.y + cweight * (result.u + result.v),
            1.0 + 2.0 * cweight,
        ),
    )


def _aggregate(metrics: Sequence[PlanarMetrics], cweight: float) -> PlanarMetrics:
    frames = float(len(metrics))
    sum_y = math.fsum(m.y for m in metrics)
    sum_u = math.fsum(m.u for m in metrics)
    sum_v = math.fsum(m.v for m in metrics)
    return PlanarMetrics(
        y=log10_convert(sum_y, frames),
        u=log10_convert(sum_u, frames),
        v=log10_convert(sum_v, frames),
        avg=log10_convert(
            sum_y + cweight * (sum_u + sum_v),
            (1.0 + 2.0 * cweight) * frames,
        ),
    )


class Ssim(VideoMetric):
    """SSIM over the frames of a video."""

    def process_frame(
        self,
        frame1: Frame,
        frame2: Frame,
        bit_depth: int,
        chroma_sampling: ChromaSampling,
    ) -> PlanarMetrics:
        """Return the *unweighted* per-plane SSIM in [0, 1]."""
        validate_frame_pair(frame1, frame2, bit_depth)
        sample_max = (1 << bit_depth) - 1

        def task(plane1: Plane, plane2: Plane, plane_idx: int) -> float:
            kernel = build_gaussian_kernel(
                plane1.height * 1.5 / 256.0,
                min(plane1.width, plane1.height),
                1 << SSIM_KERNEL_SHIFT,
            )
            return calculate_plane_ssim(plane1, plane2, sample_max, kernel, kernel)

        y, u, v = map_planes(task, frame1, frame2)
        return PlanarMetrics(y=y, u=u, v=v, avg=0.0)

    def aggregate_frame_results(self, metrics: Sequence[PlanarMetrics]) -> PlanarMetrics:
        return _aggregate(metrics, 1.0 if self.cweight is None else self.cweight)


class MsSsim(VideoMetric):
    """MS-SSIM over the frames of a video."""

    def process_frame(
        self,
        frame1: Frame,
        frame2: Frame,
        bit_depth: int,
        chroma_sampling: ChromaSampling,
    ) -> PlanarMetrics:
        """Return the *unweighted* per-plane MS-SSIM in [0, 1]."""
        validate_frame_pair(frame1, frame2, bit_depth)
        y, u, v = map_planes(_msssim_task(bit_depth), frame1, frame2)
        return PlanarMetrics(y=y, u=u, v=v, avg=0.0)

    def aggregate_frame_results(self, metrics: Sequence[PlanarMetrics]) -> PlanarMetrics:
        return _aggregate(metrics, 1.0 if self.cweight is None else self.cweight)


def _msssim_task(bit_depth: int) -> Callable[[Plane, Plane, int], float]:
    def task(plane1: Plane, plane2: Plane, plane_idx: int) -> float:
        return calculate_plane_msssim(plane1, plane2, bit_depth)

    return task


def log10_convert(score: float, weight: float) -> float:
    """Convert a summed similarity to dB: ``10 * (log10(w) - log10(w - score))``.

    A perfect (or rounding-exceeded) similarity maps to ``math.inf``.
    """
    remainder = weight - score
    if remainder <= 0.0:
        return math.inf
    return 10.0 * (math.log10(weight) - math.log10(remainder))


def build_gaussian_kernel(sigma: float, max_len: int, kernel_weight: int) -> np.ndarray:
    """Build a symmetric integer Gaussian kernel summing to ``kernel_weight``.

    The kernel is truncated once the error of the first dropped coefficient
    would be at most half a fixed-point unit; there is no point in going
    beyond that at our working precision. The center coefficient absorbs the
    rounding error so the sum is exact.

    Args:
        sigma: Standard deviation of the Gaussian, in samples.
        max_len: Upper bound on the half-length plus one.
        kernel_weight: Fixed-point value representing 1.0.

    Returns:
        int64 array of odd length.
    """
    scale = 1.0 / (math.sqrt(2.0 * math.pi) * sigma)
    nhisigma2 = -0.5 / sigma**2
    s = math.sqrt(0.5 * math.pi) * sigma * (1.0 / kernel_weight)
    length = 0 if s >= 1.0 else math.floor(sigma * math.sqrt(-2.0 * math.log(s)))
    half = max_len - 1 if length >= max_len else length
    half = max(half, 0)

    kernel = np.zeros(2 * half + 1, dtype=np.int64)
    total = 0
    for ci in range(1, half + 1):
        value = int(kernel_weight * scale * math.exp(nhisigma2 * ci * ci) + 0.5)
        kernel[half - ci] = value
        kernel[half + ci] = value
        total += value
    kernel[half] = kernel_weight - 2 * total
    return kernel


def calculate_plane_ssim(
    plane1: Plane,
    plane2: Plane,
    sample_max: int,
    vert_kernel: np.ndarray,
    horiz_kernel: np.ndarray,
) -> float:
    """Compute the SSIM of one plane pair."""
    return ssim_windowed(
        plane1.visible().astype(np.int64),
        plane2.visible().astype(np.int64),
        sample_max,
        vert_kernel,
        horiz_kernel,
    )[0]


def ssim_windowed(
    samples1: np.ndarray,
    samples2: np.ndarray,
    sample_max: int,
    vert_kernel: np.ndarray,
    horiz_kernel: np.ndarray,
) -> tuple[float, float]:
    """Windowed SSIM statistics of two equally sized sample grids.

    A horizontal pass turns each input row into a row of per-pixel moments
    stored in a circular buffer of ``line_size`` rows. Once enough rows are
    buffered, a vertical pass combines them into the full window moments of
    one output row. Near the edges both kernels are clipped to the samples
    that exist instead of padding.

    Args:
        samples1: int64 array of shape ``(height, width)``.
        samples2: int64 array of the same shape.
        sample_max: Largest possible sample value.
        vert_kernel: Vertical integer kernel.
        horiz_kernel: Horizontal integer kernel.

    Returns:
        ``(ssim, cs)``: the weight-averaged SSIM and contrast-structure
        terms. Empty grids return ``(1.0, 1.0)``.
    """
    height, width = samples1.shape
    vert_len = len(vert_kernel)
    vert_offset = vert_len >> 1
    line_size = 1 << (vert_len - 1).bit_length()
    line_mask = line_size - 1
    lines = np.zeros((line_size, _N_MOMENTS, width), dtype=np.int64)

    c1_unit = sample_max**2 * SSIM_K1
    c2_unit = sample_max**2 * SSIM_K2
    ssim = 0.0
    cs = 0.0
    ssimw = 0.0

    for y in range(height + vert_offset):
        if y < height:
            _horizontal_moments(samples1[y], samples2[y], horiz_kernel, lines[y & line_mask])
        if y < vert_offset:
            continue

        k_min = max(vert_len - (y + 1), 0)
        k_max = vert_len - max(y + 1 - height, 0)
        moments = np.zeros((_N_MOMENTS, width), dtype=np.int64)
        for k in range(k_min, k_max):
            moments += vert_kernel[k] * lines[(y + 1 + k - vert_len) & line_mask]

        w = moments[_W].astype(np.float64)
        mux = moments[_MUX].astype(np.float64)
        muy = moments[_MUY].astype(np.float64)
        c1 = c1_unit * w**2
        c2 = c2_unit * w**2
        mx2 = mux * mux
        mxy = mux * muy
        my2 = muy * muy
        var_x = moments[_X2].astype(np.float64) * w - mx2
        var_y = moments[_Y2].astype(np.float64) * w - my2
        cov_xy = moments[_XY].astype(np.float64) * w - mxy

        # Grouped so that identical inputs give a ratio of exactly 1.
        cs_row = w * _guarded_divide(c2 + 2.0 * cov_xy, var_x + var_y + c2)
        ssim_row = cs_row * _guarded_divide(2.0 * mxy + c1, mx2 + my2 + c1)

        cs += float(cs_row.sum())
        ssim += float(ssim_row.sum())
        ssimw += float(w.sum())

    if ssimw == 0.0:
        return 1.0, 1.0
    return ssim / ssimw, cs / ssimw


def _horizontal_moments(
    row1: np.ndarray,
    row2: np.ndarray,
    kernel: np.ndarray,
    out: np.ndarray,
) -> None:
    """Fill ``out`` with the horizontally filtered moments of one row."""
    width = row1.shape[0]
    offset = len(kernel) >> 1
    out[:] = 0
    xx = row1 * row1
    xy = row1 * row2
    yy = row2 * row2
    for k, weight in enumerate(kernel):
        shift = k - offset
        lo = max(0, -shift)
        hi = min(width, width - shift)
        if lo >= hi:
            continue
        src = slice(lo + shift, hi + shift)
        out[_MUX, lo:hi] += weight * row1[src]
        out[_MUY, lo:hi] += weight * row2[src]
        out[_X2, lo:hi] += weight * xx[src]
        out[_XY, lo:hi] += weight * xy[src]
        out[_Y2, lo:hi] += weight * yy[src]
        out[_W, lo:hi] += weight


def _guarded_divide(numerator: np.ndarray, denominator: np.ndarray) -> np.ndarray:
    """Element-wise division where a zero denominator yields 0."""
    out = np.zeros_like(numerator)
    np.divide(numerator, denominator, out=out, where=denominator != 0.0)
    return out


def calculate_plane_msssim(plane1: Plane, plane2: Plane, bit_depth: int) -> float:
    """Compute the MS-SSIM of one plane pair."""
    kernel = build_gaussian_kernel(1.5, 5, 1 << MSSSIM_KERNEL_SHIFT)
    sample_max = (1 << bit_depth) - 1
    samples1 = plane1.visible().astype(np.int64)
    samples2 = plane2.visible().astype(np.int64)

    ssim = [0.0] * MSSSIM_SCALES
    cs = [0.0] * MSSSIM_SCALES
    for scale in range(MSSSIM_SCALES):
        if scale > 0:
            samples1 = msssim_downscale(samples1)
            samples2 = msssim_downscale(samples2)
            sample_max *= 4
        ssim[scale], cs[scale] = ssim_windowed(samples1, samples2, sample_max, kernel, kernel)

    # Anti-correlated content can push a term below zero; a fractional power
    # of it is undefined, so it is clamped to zero similarity.
    result = 1.0
    for scale in range(MSSSIM_SCALES - 1):
        result *= max(cs[scale], 0.0) ** MS_WEIGHT[scale]
    return result * max(ssim[-1], 0.0) ** MS_WEIGHT[-1]


def msssim_downscale(samples: np.ndarray) -> np.ndarray:
    """Halve a sample grid by summing (not averaging) each 2x2 group.

    Summing keeps full precision for the next level. On odd dimensions the
    second row/column index is clamped to the last valid one.
    """
    height, width = samples.shape
    out_height = height // 2
    out_width = width // 2
    j0 = 2 * np.arange(out_height)
    j1 = np.minimum(j0 + 1, height - 1)
    i0 = 2 * np.arange(out_width)
    i1 = np.minimum(i0 + 1, width - 1)
    top = samples[j0]
    bottom = samples[j1]
    return top[:, i0] + top[:, i1] + bottom[:, i0] + bottom[:, i1]
