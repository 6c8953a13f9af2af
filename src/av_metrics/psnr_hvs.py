"""PSNR-HVS: peak signal-to-noise ratio accounting for the human visual system.

Errors are measured in the DCT domain on overlapping 8x8 blocks, weighted
by a contrast sensitivity function (CSF) and reduced by a contrast masking
threshold derived from the block's own activity.

Scores are in dB; higher is better.
"""

import math
from collections.abc import Callable, Sequence

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from av_metrics.frame import ChromaSampling, Frame, Plane, validate_frame_pair
from av_metrics.video import (
    Decoder,
    PlanarMetrics,
    ProgressCallback,
    VideoMetric,
    map_planes,
)

# Normalized inverse quantization matrices for the 8x8 DCT at the point of
# transparency. These are not the JPEG-derived tables from the original
# paper; they give slightly better MOS agreement.
CSF_Y = np.array(
    [
        [1.6193873005, 2.2901594831, 2.08509755623, 1.48366094411, 1.00227514334, 0.678296995242, 0.466224900598, 0.3265091542],
        [2.2901594831, 1.94321815382, 2.04793073064, 1.68731108984, 1.2305666963, 0.868920337363, 0.61280991668, 0.436405793551],
        [2.08509755623, 2.04793073064, 1.34329019223, 1.09205635862, 0.875748795257, 0.670882927016, 0.501731932449, 0.372504254596],
        [1.48366094411, 1.68731108984, 1.09205635862, 0.772819797575, 0.605636379554, 0.48309405692, 0.380429446972, 0.295774038565],
        [1.00227514334, 1.2305666963, 0.875748795257, 0.605636379554, 0.448996256676, 0.352889268808, 0.283006984131, 0.226951348204],
        [0.678296995242, 0.868920337363, 0.670882927016, 0.48309405692, 0.352889268808, 0.27032073436, 0.215017739696, 0.17408067321],
        [0.466224900598, 0.61280991668, 0.501731932449, 0.380429446972, 0.283006984131, 0.215017739696, 0.168869545842, 0.136153931001],
        [0.3265091542, 0.436405793551, 0.372504254596, 0.295774038565, 0.226951348204, 0.17408067321, 0.136153931001, 0.109083846276],
    ]
)  # fmt: skip

CSF_CB420 = np.array(
    [
        [1.91113096927, 2.46074210438, 1.18284184739, 1.14982565193, 1.05017074788, 0.898018824055, 0.74725392039, 0.615105596242],
        [2.46074210438, 1.58529308355, 1.21363250036, 1.38190029285, 1.33100189972, 1.17428548929, 0.996404342439, 0.830890433625],
        [1.18284184739, 1.21363250036, 0.978712413627, 1.02624506078, 1.03145147362, 0.960060382087, 0.849823426169, 0.731221236837],
        [1.14982565193, 1.38190029285, 1.02624506078, 0.861317501629, 0.801821139099, 0.751437590932, 0.685398513368, 0.608694761374],
        [1.05017074788, 1.33100189972, 1.03145147362, 0.801821139099, 0.676555426187, 0.605503172737, 0.55002013668, 0.495804539034],
        [0.898018824055, 1.17428548929, 0.960060382087, 0.751437590932, 0.605503172737, 0.514674450957, 0.454353482512, 0.407050308965],
        [0.74725392039, 0.996404342439, 0.849823426169, 0.685398513368, 0.55002013668, 0.454353482512, 0.389234902883, 0.342353999733],
        [0.615105596242, 0.830890433625, 0.731221236837, 0.608694761374, 0.495804539034, 0.407050308965, 0.342353999733, 0.295530605237],
    ]
)  # fmt: skip

CSF_CR420 = np.array(
    [
        [2.03871978502, 2.62502345193, 1.26180942886, 1.11019789803, 1.01397751469, 0.867069376285, 0.721500455585, 0.593906509971],
        [2.62502345193, 1.69112867013, 1.17180569821, 1.3342742857, 1.28513006198, 1.13381474809, 0.962064122248, 0.802254508198],
        [1.26180942886, 1.17180569821, 0.944981930573, 0.990876405848, 0.995903384143, 0.926972725286, 0.820534991409, 0.706020324706],
        [1.11019789803, 1.3342742857, 0.990876405848, 0.831632933426, 0.77418706195, 0.725539939514, 0.661776842059, 0.587716619023],
        [1.01397751469, 1.28513006198, 0.995903384143, 0.77418706195, 0.653238524286, 0.584635025748, 0.531064164893, 0.478717061273],
        [0.867069376285, 1.13381474809, 0.926972725286, 0.725539939514, 0.584635025748, 0.496936637883, 0.438694579826, 0.393021669543],
        [0.721500455585, 0.962064122248, 0.820534991409, 0.661776842059, 0.531064164893, 0.438694579826, 0.375820256136, 0.330555063063],
        [0.593906509971, 0.802254508198, 0.706020324706, 0.587716619023, 0.478717061273, 0.393021669543, 0.330555063063, 0.285345396658],
    ]
)  # fmt: skip

CSF_TABLES = (CSF_Y, CSF_CB420, CSF_CR420)

# Multiplying the PSNR-HVS CSF by this constant and squaring gives the
# PSNR-HVS-M masking table. Its origin is undocumented, but moving away from
# it hurts MOS agreement.
CSF_MULTIPLIER = 0.3885746225901003

BLOCK_STEP = 7

# Quadrant index of every sample in an 8x8 block.
_QUADRANT = ((np.arange(8)[:, None] & 12) >> 2) + ((np.arange(8)[None, :] & 12) >> 1)


def calculate_video_psnr_hvs(
    decoder1: Decoder,
    decoder2: Decoder,
    frame_limit: int | None = None,
    progress_callback: ProgressCallback | None = None,
) -> PlanarMetrics:
    """Calculate the PSNR-HVS score between two videos. Higher is better."""
    cweight = decoder1.get_video_details().chroma_sampling.chroma_weight
    return PsnrHvs(cweight).process_video(decoder1, decoder2, frame_limit, progress_callback)


def calculate_frame_psnr_hvs(
    frame1: Frame,
    frame2: Frame,
    bit_depth: int,
    chroma_sampling: ChromaSampling = ChromaSampling.CS444,
) -> PlanarMetrics:
    """Calculate the PSNR-HVS score between two frames. Higher is better."""
    result = PsnrHvs().process_frame(frame1, frame2, bit_depth, chroma_sampling)
    cweight = chroma_sampling.chroma_weight
    return PlanarMetrics(
        y=log10_convert(result.y, 1.0),
        u=log10_convert(result.u, 1.0),
        v=log10_convert(result.v, 1.0),
        avg=log10_convert(
            result.y + cweight * (result.u + result.v),
            1.0 / (1.0 + 2.0 * cweight),
        ),
    )


class PsnrHvs(VideoMetric):
    """PSNR-HVS over the frames of a video."""

    def process_frame(
        self,
        frame1: Frame,
        frame2: Frame,
        bit_depth: int,
        chroma_sampling: ChromaSampling,
    ) -> PlanarMetrics:
        """Return the *unweighted* per-plane error accumulators.

        They are log-converted later, differently for a single frame and for
        a whole video.
        """
        validate_frame_pair(frame1, frame2, bit_depth)
        y, u, v = map_planes(_plane_task(bit_depth), frame1, frame2)
        return PlanarMetrics(y=y, u=u, v=v, avg=0.0)

    def aggregate_frame_results(self, metrics: Sequence[PlanarMetrics]) -> PlanarMetrics:
        cweight = 1.0 if self.cweight is None else self.cweight
        weight = 1.0 / len(metrics)
        sum_y = math.fsum(m.y for m in metrics)
        sum_u = math.fsum(m.u for m in metrics)
        sum_v = math.fsum(m.v for m in metrics)
        return PlanarMetrics(
            y=log10_convert(sum_y, weight),
            u=log10_convert(sum_u, weight),
            v=log10_convert(sum_v, weight),
            avg=log10_convert(
                sum_y + cweight * (sum_u + sum_v),
                weight / (1.0 + 2.0 * cweight),
            ),
        )


def _plane_task(bit_depth: int) -> Callable[[Plane, Plane, int], float]:
    def task(plane1: Plane, plane2: Plane, plane_idx: int) -> float:
        return calculate_plane_psnr_hvs(plane1, plane2, plane_idx, bit_depth)

    return task


def log10_convert(score: float, weight: float) -> float:
    """Convert a weighted squared-error score to dB.

    A zero error maps to ``math.inf``.
    """
    scaled = weight * score
    if scaled <= 0.0:
        return math.inf
    return 10.0 * -math.log10(scaled)


def calculate_plane_psnr_hvs(
    plane1: Plane,
    plane2: Plane,
    plane_idx: int,
    bit_depth: int,
) -> float:
    """Compute the normalized PSNR-HVS squared error of one plane pair.

    The plane is covered with 8x8 blocks on a step of 7 samples. A trailing
    strip of samples too narrow to hold another full block is skipped.

    Args:
        plane1: Reference plane.
        plane2: Distorted plane, same dimensions as ``plane1``.
        plane_idx: 0 for luma, 1 and 2 for the chroma planes; selects the
            CSF table.
        bit_depth: Bit depth of the samples.

    Returns:
        Mean squared CSF-weighted error divided by the squared sample
        maximum. Planes too small to hold a single block return 0.0.
    """
    csf = CSF_TABLES[plane_idx]
    mask = (csf * CSF_MULTIPLIER) ** 2

    blocks1 = _extract_blocks(plane1.visible())
    blocks2 = _extract_blocks(plane2.visible())
    if blocks1.shape[0] == 0:
        return 0.0

    ratio1 = _masking_ratio(blocks1)
    ratio2 = _masking_ratio(blocks2)

    dct1 = od_bin_fdct8x8(blocks1)
    dct2 = od_bin_fdct8x8(blocks2)

    ac_mask = mask.copy()
    ac_mask[0, 0] = 0.0
    energy1 = (dct1.astype(np.float64) ** 2 * ac_mask).sum(axis=(1, 2))
    energy2 = (dct2.astype(np.float64) ** 2 * ac_mask).sum(axis=(1, 2))
    threshold = np.maximum(
        np.sqrt(energy1 * ratio1) / 32.0,
        np.sqrt(energy2 * ratio2) / 32.0,
    )

    err = np.abs(dct1 - dct2).astype(np.float64)
    dc = err[:, 0, 0].copy()
    err = np.maximum(err - threshold[:, None, None] / mask, 0.0)
    # The DC coefficient is never masked.
    err[:, 0, 0] = dc

    result = float(((err * csf) ** 2).sum())
    pixels = err.size
    sample_max = (1 << bit_depth) - 1
    return result / pixels / sample_max**2


def _extract_blocks(samples: np.ndarray) -> np.ndarray:
    """Return every 8x8 block on the step grid as an ``(n, 8, 8)`` int64 array."""
    height, width = samples.shape
    if height < 8 or width < 8:
        return np.zeros((0, 8, 8), dtype=np.int64)
    windows = sliding_window_view(samples, (8, 8))[::BLOCK_STEP, ::BLOCK_STEP]
    return windows.reshape(-1, 8, 8).astype(np.int64)


def _masking_ratio(blocks: np.ndarray) -> np.ndarray:
    """Ratio of summed quadrant variances to global variance, per block.

    Flat blocks (zero global variance) get a ratio of 0, i.e. no masking.
    """
    samples = blocks.astype(np.float64)
    gmean = samples.mean(axis=(1, 2))
    gvar = ((samples - gmean[:, None, None]) ** 2).sum(axis=(1, 2)) * (64.0 / 63.0)

    quad_vars = np.zeros(samples.shape[0])
    for quadrant in range(4):
        members = samples[:, _QUADRANT == quadrant]
        qmean = members.mean(axis=1)
        quad_vars += ((members - qmean[:, None]) ** 2).sum(axis=1) * (16.0 / 15.0)

    ratio = np.zeros_like(gvar)
    np.divide(quad_vars, gvar, out=ratio, where=gvar > 0.0)
    return ratio


def od_bin_fdct8x8(blocks: np.ndarray) -> np.ndarray:
    """Forward 8x8 integer DCT (Daala lifting variant) of a stack of blocks.

    This is not the DCT used when encoding; its fixed-point rounding must be
    reproduced exactly for scores to match other implementations.

    Args:
        blocks: Integer array of shape ``(n, 8, 8)`` indexed ``[n, row, col]``.

    Returns:
        int64 array of the same shape indexed ``[n, vertical, horizontal]``
        frequency.
    """
    blocks = np.asarray(blocks, dtype=np.int64)
    columns = _od_bin_fdct8([blocks[:, k, :] for k in range(8)])
    vertical = np.stack(columns, axis=1)
    rows = _od_bin_fdct8([vertical[:, :, k] for k in range(8)])
    return np.stack(rows, axis=2)


def _od_bin_fdct8(x: list[np.ndarray]) -> list[np.ndarray]:
    """One-dimensional 8-point integer DCT over parallel input vectors."""
    t = [x[0], x[7], x[2], x[5], x[1], x[6], x[3], x[4]]
    th = [None] * 8
    # +1/-1 butterflies
    t[1] = t[0] - t[1]
    th[1] = _od_dct_rshift(t[1])
    t[0] = t[0] - th[1]
    t[4] = t[4] + t[5]
    th[4] = _od_dct_rshift(t[4])
    t[5] = t[5] - th[4]
    t[3] = t[2] - t[3]
    t[2] = t[2] - _od_dct_rshift(t[3])
    t[6] = t[6] + t[7]
    th[6] = _od_dct_rshift(t[6])
    t[7] = th[6] - t[7]
    # + Embedded 4-point type-II DCT
    t[0] = t[0] + th[6]
    t[6] = t[0] - t[6]
    t[2] = th[4] - t[2]
    t[4] = t[2] - t[4]
    # |-+ Embedded 2-point type-II DCT
    t[0] = t[0] - ((t[4] * 13573 + 16384) >> 15)
    t[4] = t[4] + ((t[0] * 11585 + 8192) >> 14)
    t[0] = t[0] - ((t[4] * 13573 + 16384) >> 15)
    # |-+ Embedded 2-point type-IV DST
    t[6] = t[6] - ((t[2] * 21895 + 16384) >> 15)
    t[2] = t[2] + ((t[6] * 15137 + 8192) >> 14)
    t[6] = t[6] - ((t[2] * 21895 + 16384) >> 15)
    # + Embedded 4-point type-IV DST
    t[3] = t[3] + ((t[5] * 19195 + 16384) >> 15)
    t[5] = t[5] + ((t[3] * 11585 + 8192) >> 14)
    t[3] = t[3] - ((t[5] * 7489 + 4096) >> 13)
    t[7] = _od_dct_rshift(t[5]) - t[7]
    t[5] = t[5] - t[7]
    t[3] = th[1] - t[3]
    t[1] = t[1] - t[3]
    t[7] = t[7] + ((t[1] * 3227 + 16384) >> 15)
    t[1] = t[1] - ((t[7] * 6393 + 16384) >> 15)
    t[7] = t[7] + ((t[1] * 3227 + 16384) >> 15)
    t[5] = t[5] + ((t[3] * 2485 + 4096) >> 13)
    t[3] = t[3] - ((t[5] * 18205 + 16384) >> 15)
    t[5] = t[5] + ((t[3] * 2485 + 4096) >> 13)
    return t


def _od_dct_rshift(a: np.ndarray) -> np.ndarray:
    """Halve ``a``, rounding toward zero."""
    return (a + (a < 0)) >> 1
