"""Perceptual video quality metrics: PSNR-HVS, SSIM and MS-SSIM."""

from av_metrics.decoders import FrameListDecoder, ImageDecoder, Y4MDecoder, open_decoder
from av_metrics.errors import DecodeError, InputMismatch, MalformedInput, MetricsError
from av_metrics.frame import ChromaSampling, Frame, Plane, validate_frame_pair
from av_metrics.psnr_hvs import calculate_frame_psnr_hvs, calculate_video_psnr_hvs
from av_metrics.ssim import (
    calculate_frame_msssim,
    calculate_frame_ssim,
    calculate_video_msssim,
    calculate_video_ssim,
)
from av_metrics.video import Decoder, PlanarMetrics, VideoDetails, VideoMetric

__all__ = [
    "ChromaSampling",
    "DecodeError",
    "Decoder",
    "Frame",
    "FrameListDecoder",
    "ImageDecoder",
    "InputMismatch",
    "MalformedInput",
    "MetricsError",
    "PlanarMetrics",
    "Plane",
    "VideoDetails",
    "VideoMetric",
    "Y4MDecoder",
    "calculate_frame_msssim",
    "calculate_frame_psnr_hvs",
    "calculate_frame_ssim",
    "calculate_video_msssim",
    "calculate_video_psnr_hvs",
    "calculate_video_ssim",
    "open_decoder",
    "validate_frame_pair",
]
