"""Measurement jobs: configuration, execution and results.

A job compares one reference against one distorted input (a ``.y4m`` video
or a still image) with any subset of the available metrics and writes the
video-level scores to JSON.
"""

import json
import math
from collections.abc import Callable
from contextlib import ExitStack
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from tqdm import tqdm

from av_metrics.decoders import open_decoder
from av_metrics.psnr_hvs import calculate_video_psnr_hvs
from av_metrics.ssim import calculate_video_msssim, calculate_video_ssim
from av_metrics.video import Decoder, PlanarMetrics, ProgressCallback

VideoMetricFn = Callable[
    [Decoder, Decoder, int | None, ProgressCallback | None], PlanarMetrics
]

METRICS: dict[str, VideoMetricFn] = {
    "psnr_hvs": calculate_video_psnr_hvs,
    "ssim": calculate_video_ssim,
    "msssim": calculate_video_msssim,
}


@dataclass
class MeasureConfig:
    """Configuration for a single reference/distorted comparison."""

    reference: Path
    distorted: Path
    metrics: list[str] = field(default_factory=lambda: list(METRICS))
    frame_limit: int | None = None
    name: str | None = None

    def __post_init__(self) -> None:
        unknown = [m for m in self.metrics if m not in METRICS]
        if unknown:
            msg = f"Unknown metrics: {', '.join(unknown)} (available: {', '.join(METRICS)})"
            raise ValueError(msg)
        if not self.metrics:
            msg = "At least one metric must be requested"
            raise ValueError(msg)
        if self.frame_limit is not None and self.frame_limit < 1:
            msg = f"frame_limit must be positive, got {self.frame_limit}"
            raise ValueError(msg)

    @classmethod
    def from_file(cls, config_path: Path) -> "MeasureConfig":
        """Load a measurement configuration from a JSON file.

        Relative input paths are resolved against the config file's directory.

        Raises:
            FileNotFoundError: If config file does not exist
            ValueError: If config file has invalid content
        """
        if not config_path.exists():
            msg = f"Measurement config not found: {config_path}"
            raise FileNotFoundError(msg)

        with open(config_path) as f:
            data = json.load(f)

        config = cls.from_dict(data)
        base = config_path.parent
        if not config.reference.is_absolute():
            config.reference = base / config.reference
        if not config.distorted.is_absolute():
            config.distorted = base / config.distorted
        return config

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MeasureConfig":
        """Create a MeasureConfig from a dictionary.

        Raises:
            ValueError: If required fields are missing or invalid
        """
        if "reference" not in data or "distorted" not in data:
            msg = "Measurement config must have 'reference' and 'distorted' fields"
            raise ValueError(msg)

        metrics = data.get("metrics", list(METRICS))
        if isinstance(metrics, str):
            metrics = [metrics]

        return cls(
            reference=Path(data["reference"]),
            distorted=Path(data["distorted"]),
            metrics=list(metrics),
            frame_limit=data.get("frame_limit"),
            name=data.get("name"),
        )


@dataclass
class MeasureResults:
    """Video-level scores of one measurement job."""

    name: str
    reference: str
    distorted: str
    width: int
    height: int
    bit_depth: int
    chroma_sampling: str
    frames: int
    scores: dict[str, PlanarMetrics]
    timestamp: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "reference": self.reference,
            "distorted": self.distorted,
            "width": self.width,
            "height": self.height,
            "bit_depth": self.bit_depth,
            "chroma_sampling": self.chroma_sampling,
            "frames": self.frames,
            "timestamp": self.timestamp,
            "scores": {
                metric: {plane: _json_score(score) for plane, score in value.to_dict().items()}
                for metric, value in self.scores.items()
            },
        }

    def save(self, path: Path) -> None:
        """Save results to a JSON file.

        Infinite scores (identical planes) are written as the string
        ``"inf"`` so the file stays valid JSON.

        Args:
            path: Path where the JSON file will be written
        """
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2, allow_nan=False)


def _json_score(score: float) -> float | str:
    """Return *score* unchanged, or as ``"inf"``/``"-inf"``/``"nan"`` if not finite."""
    return score if math.isfinite(score) else str(score)


class _ProgressSink:
    """Progress callback that drives a tqdm bar and remembers the frame count."""

    def __init__(self, pbar: tqdm) -> None:
        self.pbar = pbar
        self.frames = 0

    def __call__(self, frames: int) -> None:
        self.pbar.update(frames - self.frames)
        self.frames = frames


def _open(stack: ExitStack, path: Path) -> Decoder:
    """Open a decoder and register its ``close`` (if any) with *stack*."""
    decoder = open_decoder(path)
    close = getattr(decoder, "close", None)
    if close is not None:
        stack.callback(close)
    return decoder


def measure_videos(config: MeasureConfig, show_progress: bool = True) -> MeasureResults:
    """Run every requested metric of a measurement job.

    Each metric gets its own pair of freshly opened decoders, so the inputs
    are read once per metric.

    Args:
        config: The job to run.
        show_progress: Display a tqdm progress bar per metric.

    Returns:
        Collected video-level scores.

    Raises:
        FileNotFoundError: If an input does not exist.
        ValueError: If the config requests no metrics.
        MetricsError: If the inputs cannot be compared or decoded.
    """
    scores: dict[str, PlanarMetrics] = {}
    frames = 0
    details = None
    for metric in config.metrics:
        with ExitStack() as stack:
            reference = _open(stack, config.reference)
            distorted = _open(stack, config.distorted)
            details = reference.get_video_details()
            with tqdm(desc=metric, unit="frame", disable=not show_progress) as pbar:
                sink = _ProgressSink(pbar)
                scores[metric] = METRICS[metric](reference, distorted, config.frame_limit, sink)
            frames = sink.frames

    if details is None:
        msg = "At least one metric must be requested"
        raise ValueError(msg)

    return MeasureResults(
        name=config.name or f"{config.reference.stem}-vs-{config.distorted.stem}",
        reference=str(config.reference),
        distorted=str(config.distorted),
        width=details.width,
        height=details.height,
        bit_depth=details.bit_depth,
        chroma_sampling=details.chroma_sampling.value,
        frames=frames,
        scores=scores,
        timestamp=datetime.now(UTC).isoformat(),
    )
