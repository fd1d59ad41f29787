"""Key-frame selection strategies and perceptual diff scoring."""

from .diff import DiffMethod, consecutive_diffs, frame_diff, get_diff_function, ssim_diff
from .model_aware import drop_frames_for_budget, select_model_aligned_frames
from .threshold import select_evenly_spaced_frames, select_key_frames

__all__ = [
    "DiffMethod",
    "consecutive_diffs",
    "drop_frames_for_budget",
    "frame_diff",
    "get_diff_function",
    "select_evenly_spaced_frames",
    "select_key_frames",
    "select_model_aligned_frames",
    "ssim_diff",
]
