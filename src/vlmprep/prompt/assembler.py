"""Placeholder-token prompt text for tiled images and sampled video frames.

The chat template is rendered with a single placeholder first; once tile and
frame counts are known the fully expanded block is spliced in. The number of
expanded units must match the pixel batch one-to-one.
"""

from __future__ import annotations

import math
from typing import Sequence

from vlmprep.core.errors import MediaCountMismatchError, MissingSplicePointError


def format_timestamp(seconds: float) -> str:
    """Round up to whole seconds and format as H:MM:SS."""

    total = int(math.ceil(max(seconds, 0.0)))
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours}:{minutes:02d}:{secs:02d}"


def _unit(fake_marker: str, label: str, placeholder_token: str, seq_len: int) -> str:
    return fake_marker + label + placeholder_token * seq_len


def image_prompt_text(
    rows: int,
    cols: int,
    seq_len: int,
    fake_marker: str,
    placeholder_token: str,
    global_marker: str,
) -> str:
    """Expanded prompt for a rows x cols tile grid followed by the global tile."""

    if rows < 1 or cols < 1 or seq_len < 1:
        raise ValueError("rows, cols and seq_len must be positive")
    parts = []
    for row in range(rows):
        for col in range(cols):
            parts.append(_unit(fake_marker, f"<row_{row + 1}_col_{col + 1}>", placeholder_token, seq_len))
        parts.append("\n")
    parts.append("\n" + _unit(fake_marker, global_marker, placeholder_token, seq_len) + fake_marker)
    return "".join(parts)


def global_image_prompt_text(seq_len: int, fake_marker: str, placeholder_token: str, global_marker: str) -> str:
    """Single global unit for an image that is not split into tiles."""

    if seq_len < 1:
        raise ValueError("seq_len must be positive")
    return _unit(fake_marker, global_marker, placeholder_token, seq_len) + fake_marker


def video_prompt_text(
    frame_count: int,
    timestamps: Sequence[str],
    total_duration: str,
    seq_len: int,
    fake_marker: str,
    placeholder_token: str,
    global_marker: str,
) -> str:
    """Expanded prompt for sampled video frames, one global-style unit per frame."""

    if len(timestamps) != frame_count:
        raise MediaCountMismatchError(units=len(timestamps), batches=frame_count)
    parts = [
        f"You are provided the following series of {frame_count} frames "
        f"from a {total_duration} [H:MM:SS] video.\n"
    ]
    for stamp in timestamps:
        parts.append(f"\nFrame from {stamp}:")
        parts.append(_unit(fake_marker, global_marker, placeholder_token, seq_len) + fake_marker)
    parts.append("\n\n")
    return "".join(parts)


def count_prompt_units(text: str, placeholder_token: str, seq_len: int) -> int:
    """Number of seq_len-long placeholder runs in an expanded block."""

    return text.count(placeholder_token * seq_len)


def ensure_unit_count(units: int, batches: int) -> None:
    if units != batches:
        raise MediaCountMismatchError(units=units, batches=batches)


def splice(rendered: str, marker: str, replacement: str, *, keep_marker: bool = False) -> str:
    """Splice the expanded block at the first occurrence of marker.

    With keep_marker=False the marker itself is replaced (image placeholder);
    with keep_marker=True the block is inserted right after it (role prefix).
    """

    position = rendered.find(marker)
    if position < 0:
        raise MissingSplicePointError(marker)
    head = rendered[: position + len(marker)] if keep_marker else rendered[:position]
    tail = rendered[position + len(marker):]
    return head + replacement + tail
