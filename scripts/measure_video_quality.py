#!/usr/bin/env python3
"""Script to measure PSNR-HVS, SSIM and MS-SSIM between two inputs.

Inputs are YUV4MPEG2 videos (``.y4m``) or still images. Scores are printed
as a per-plane table and can be saved as JSON.

Usage:
    python3 scripts/measure_video_quality.py ref.y4m dist.y4m
    python3 scripts/measure_video_quality.py ref.y4m dist.y4m --metric ssim --frames 100
    python3 scripts/measure_video_quality.py --config job.json --output results.json
"""

import argparse
import sys
from dataclasses import replace
from pathlib import Path

# Add src to path for local imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from av_metrics.errors import MetricsError  # noqa: E402
from av_metrics.measure import METRICS, MeasureConfig, measure_videos  # noqa: E402


def _build_config(args: argparse.Namespace) -> MeasureConfig:
    if args.config is not None:
        config = MeasureConfig.from_file(args.config)
    else:
        if args.reference is None or args.distorted is None:
            msg = "REFERENCE and DISTORTED are required without --config"
            raise ValueError(msg)
        config = MeasureConfig(reference=args.reference, distorted=args.distorted)

    # Command-line flags override the config file
    overrides: dict[str, object] = {}
    if args.metric:
        overrides["metrics"] = args.metric
    if args.frames is not None:
        overrides["frame_limit"] = args.frames
    return replace(config, **overrides)


def main() -> int:
    """Main entry point for the video quality measurement script.

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    parser = argparse.ArgumentParser(
        description="Measure perceptual quality metrics between two videos or images.",
    )
    parser.add_argument("reference", type=Path, nargs="?", help="Reference video or image")
    parser.add_argument("distorted", type=Path, nargs="?", help="Distorted video or image")
    parser.add_argument(
        "--metric",
        action="append",
        choices=list(METRICS),
        help="Metric to compute (repeatable, default: all)",
    )
    parser.add_argument(
        "--frames",
        type=int,
        help="Maximum number of frames to compare (default: all)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="JSON measurement config (reference, distorted, metrics, frame_limit)",
    )
    parser.add_argument(
        "--output",
        type=Path,
        help="Write results JSON to this path",
    )
    parser.add_argument(
        "--no-progress",
        action="store_true",
        help="Disable progress bars",
    )

    args = parser.parse_args()

    try:
        config = _build_config(args)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error: {e}")
        return 1

    try:
        results = measure_videos(config, show_progress=not args.no_progress)
    except (MetricsError, OSError) as e:
        print(f"Error: {e}")
        return 1

    if config.frame_limit is not None and results.frames < config.frame_limit:
        print(
            f"Warning: requested {config.frame_limit} frame(s) but the inputs "
            f"only provided {results.frames}"
        )

    print(f"\nMeasurement complete: {results.name}")
    print(f"  Reference: {results.reference}")
    print(f"  Distorted: {results.distorted}")
    print(
        f"  Video: {results.width}x{results.height}, {results.bit_depth}-bit, "
        f"{results.chroma_sampling}, {results.frames} frame(s)"
    )
    print(f"\n  {'metric':<10} {'Y':>10} {'U':>10} {'V':>10} {'avg':>10}")
    for metric, score in results.scores.items():
        print(
            f"  {metric:<10} {score.y:>10.4f} {score.u:>10.4f} "
            f"{score.v:>10.4f} {score.avg:>10.4f}"
        )

    if args.output is not None:
        results.save(args.output)
        print(f"\n  Results: {args.output}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
