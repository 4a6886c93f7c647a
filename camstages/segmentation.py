"""Image segmentation and the stage that produces it."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from itertools import takewhile
from typing import Any

import numpy as np

from .detection import read_labels
from .stage import StreamInfo, register_stage
from .tfstage import InterpreterFactory, TfConfig, TfStage

logger = logging.getLogger(__name__)

NAME = "segmentation_tf"

# Size of the image the segmentation network is fed.
WIDTH = 257
HEIGHT = 257


@dataclass(eq=False)
class Segmentation:
    """A per-pixel category map with the labels it indexes."""

    width: int
    height: int
    labels: list[str]
    segmentation: np.ndarray = field(repr=False)


def interpret_segmentation(
    output: Any, num_categories: int, width: int = WIDTH, height: int = HEIGHT
) -> tuple[np.ndarray, list[int]]:
    """Pick the most confident category of every pixel.

    Returns the flat uint8 category map and a histogram of category counts.
    """
    if num_categories <= 0:
        raise ValueError("at least one category is required")
    flat = np.asarray(output).reshape(-1)
    needed = width * height * num_categories
    if flat.size < needed:
        raise ValueError("output tensor too small")
    scores = flat[:needed].reshape(width * height, num_categories)
    indices = np.argmax(scores, axis=1)
    histogram = np.bincount(indices, minlength=num_categories).tolist()
    return indices.astype(np.uint8), histogram


def top_categories(
    histogram: Sequence[int], labels: Sequence[str], threshold: int
) -> list[tuple[str, int]]:
    """Return (label, count) for the largest bins holding at least threshold pixels."""
    ranked = sorted(enumerate(histogram), key=lambda item: item[1], reverse=True)
    return [(labels[i], count) for i, count in takewhile(lambda it: it[1] >= threshold, ranked)]


def draw_segmentation(
    buffer: Any,
    segmentation: Any,
    info: StreamInfo,
    num_labels: int,
    width: int = WIDTH,
    height: int = HEIGHT,
) -> None:
    """Draw the category map in the bottom right corner of a YUV420 buffer, in grey.

    buffer must be writable and contiguous (a bytearray or uint8 array).
    """
    if num_labels <= 0:
        raise ValueError("at least one label is required")
    if info.width < width or info.height < height:
        raise ValueError("image smaller than the segmentation")
    arr = buffer if isinstance(buffer, np.ndarray) else np.frombuffer(buffer, dtype=np.uint8)
    arr = arr.reshape(-1)

    stride = info.stride
    half_stride = stride // 2
    y_size = info.height * stride
    uv_size = (info.height // 2) * half_stride
    if arr.size < y_size + 2 * uv_size:
        raise ValueError("buffer too small for its stream info")

    scale = 255 // num_labels
    seg = np.asarray(segmentation, dtype=np.int64).reshape(height, width)
    y_off = info.height - height
    x_off = info.width - width
    luma = arr[:y_size].reshape(info.height, stride)
    luma[y_off : y_off + height, x_off : x_off + width] = ((scale * seg) & 0xFF).astype(np.uint8)

    y_off //= 2
    x_off //= 2
    for start in (y_size, y_size + uv_size):
        plane = arr[start : start + uv_size].reshape(info.height // 2, half_stride)
        plane[y_off : y_off + height // 2, x_off : x_off + width // 2] = 128


@dataclass
class SegmentationTfConfig(TfConfig):
    """Settings of the segmentation stage."""

    draw: bool = True
    threshold: int = 5000  # pixels in a category before its name is reported


class SegmentationTfStage(TfStage):
    """Segments the image, attaching the map and optionally drawing it."""

    config_type = SegmentationTfConfig
    config: SegmentationTfConfig

    def __init__(self, app: Any, interpreter_factory: InterpreterFactory | None = None) -> None:
        super().__init__(app, WIDTH, HEIGHT, interpreter_factory)
        self.labels: list[str] = []
        self.segmentation = np.zeros(WIDTH * HEIGHT, dtype=np.uint8)

    def name(self) -> str:
        return NAME

    def read_extras(self, params: Mapping[str, Any]) -> None:
        self.config.draw = bool(int(params.get("draw", 1)))
        self.config.threshold = int(params.get("threshold", 5000))
        self.labels = read_labels(str(params.get("labels_file", "")))
        shape = self._output_shape(0)
        if len(shape) != 4 or shape[1:] != (HEIGHT, WIDTH, len(self.labels)):
            raise RuntimeError("SegmentationTfStage: Unexpected output tensor size")

    def check_configuration(self) -> None:
        if self.main_stream is None and self.config.draw:
            raise RuntimeError("SegmentationTfStage: Main stream is required for drawing")

    def interpret_outputs(self) -> None:
        segmentation, histogram = interpret_segmentation(
            self._output_tensor(0), len(self.labels), WIDTH, HEIGHT
        )
        self.segmentation = segmentation
        if self.config.verbose:
            top = top_categories(histogram, self.labels, self.config.threshold)
            logger.info("%s", ", ".join(f"{label} ({count})" for label, count in top))

    def apply_results(self, request: Any) -> None:
        request.post_process_metadata["segmentation.result"] = Segmentation(
            WIDTH, HEIGHT, list(self.labels), self.segmentation.copy()
        )
        if not self.config.draw:
            return
        draw_segmentation(
            request.buffers[self.main_stream],
            self.segmentation,
            self.main_stream_info,
            len(self.labels),
            WIDTH,
            HEIGHT,
        )


register_stage(NAME, SegmentationTfStage)