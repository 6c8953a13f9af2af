"""Integration tests for the measure_video_quality.py script."""

import json
import subprocess
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent.parent
SCRIPT = PROJECT_ROOT / "scripts" / "measure_video_quality.py"


def run_script(*args: str) -> subprocess.CompletedProcess[str]:
    return subprocess.run(
        [sys.executable, str(SCRIPT), *args],
        capture_output=True,
        text=True,
        cwd=PROJECT_ROOT,
    )


def test_measure_video_quality_script_runs(y4m_pair: tuple[Path, Path], tmp_path: Path):
    """Test that the script measures two Y4M files and writes JSON."""
    reference, distorted = y4m_pair
    output_file = tmp_path / "results.json"

    result = run_script(str(reference), str(distorted), "--output", str(output_file), "--no-progress")

    assert result.returncode == 0, (
        f"Script failed:\nSTDOUT:\n{result.stdout}\nSTDERR:\n{result.stderr}"
    )
    assert "Measurement complete" in result.stdout
    assert output_file.exists(), "Output file not created"

    with open(output_file) as f:
        data = json.load(f)

    assert data["frames"] == 3
    assert data["chroma_sampling"] == "420"
    assert set(data["scores"]) == {"psnr_hvs", "ssim", "msssim"}
    for score in data["scores"].values():
        assert set(score) == {"y", "u", "v", "avg"}


def test_measure_video_quality_script_metric_and_frames(
    y4m_pair: tuple[Path, Path], tmp_path: Path
):
    """Test that --metric and --frames restrict the measurement."""
    reference, distorted = y4m_pair
    output_file = tmp_path / "results.json"

    result = run_script(
        str(reference),
        str(distorted),
        "--metric",
        "ssim",
        "--frames",
        "1",
        "--output",
        str(output_file),
        "--no-progress",
    )

    assert result.returncode == 0, f"Script failed: {result.stderr}"
    data = json.loads(output_file.read_text())
    assert data["frames"] == 1
    assert list(data["scores"]) == ["ssim"]


def test_measure_video_quality_script_config(y4m_pair: tuple[Path, Path], tmp_path: Path):
    """Test that inputs can come from a JSON config next to the videos."""
    config_path = tmp_path / "job.json"
    config_path.write_text(
        json.dumps(
            {
                "reference": y4m_pair[0].name,
                "distorted": y4m_pair[1].name,
                "metrics": ["psnr_hvs"],
                "name": "from-config",
            }
        )
    )
    output_file = tmp_path / "results.json"

    result = run_script("--config", str(config_path), "--output", str(output_file), "--no-progress")

    assert result.returncode == 0, f"Script failed: {result.stderr}"
    data = json.loads(output_file.read_text())
    assert data["name"] == "from-config"
    assert list(data["scores"]) == ["psnr_hvs"]


def test_measure_video_quality_script_handles_missing_file(tmp_path: Path):
    """Test that a missing input is reported without a traceback."""
    result = run_script(str(tmp_path / "a.y4m"), str(tmp_path / "b.y4m"), "--no-progress")

    assert result.returncode != 0
    assert "not found" in result.stdout.lower()


def test_measure_video_quality_script_requires_inputs():
    """Test that inputs are required without --config."""
    result = run_script()

    assert result.returncode == 1
    assert "error" in result.stdout.lower()


def test_measure_video_quality_script_help():
    """Test that --help works."""
    result = run_script("--help")

    assert result.returncode == 0
    assert "measure perceptual quality metrics" in result.stdout.lower()
    assert "--metric" in result.stdout
    assert "--frames" in result.stdout


def test_measure_video_quality_script_identical_inputs(
    y4m_pair: tuple[Path, Path], tmp_path: Path
):
    """Test that a perfect match is written as strict JSON."""
    reference, _ = y4m_pair
    output_file = tmp_path / "results.json"

    result = run_script(
        str(reference),
        str(reference),
        "--metric",
        "psnr_hvs",
        "--output",
        str(output_file),
        "--no-progress",
    )

    assert result.returncode == 0, f"Script failed: {result.stderr}"
    text = output_file.read_text()
    assert "Infinity" not in text
    data = json.loads(text)
    assert data["scores"]["psnr_hvs"]["y"] == "inf"


def test_measure_video_quality_script_handles_malformed_header(tmp_path: Path):
    """Test that a corrupt Y4M header is reported without a traceback."""
    bad = tmp_path / "bad.y4m"
    bad.write_bytes(b"YUV4MPEG2 Wabc H16 C420jpeg\n")

    result = run_script(str(bad), str(bad), "--no-progress")

    assert result.returncode == 1
    assert "Error: Invalid Y4M frame dimension" in result.stdout
    assert "Traceback" not in result.stderr
