"""Object detection results and the stage that produces them."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from os import PathLike
from typing import Any, Union

import numpy as np

from .stage import StreamInfo, register_stage
from .tfstage import InterpreterFactory, TfConfig, TfStage

logger = logging.getLogger(__name__)

NAME = "object_detect_tf"

# Size of the image the detection network is fed.
WIDTH = 300
HEIGHT = 300

_OUTPUT_SHAPE = (1, 10, 4)


@dataclass(frozen=True)
class Rectangle:
    """An axis-aligned rectangle in integer pixel coordinates."""

    x: int = 0
    y: int = 0
    width: int = 0
    height: int = 0

    def area(self) -> int:
        return self.width * self.height

    def bounded_to(self, other: Rectangle) -> Rectangle:
        """Return the intersection with other; empty if they do not meet."""
        left = max(self.x, other.x)
        top = max(self.y, other.y)
        right = min(self.x + self.width, other.x + other.width)
        bottom = min(self.y + self.height, other.y + other.height)
        return Rectangle(left, top, max(right - left, 0), max(bottom - top, 0))


@dataclass
class Detection:
    """One detected object."""

    category: int
    name: str
    confidence: float
    box: Rectangle

    def __str__(self) -> str:
        b = self.box
        return (
            f"{self.name}[{self.category}] ({self.confidence:.2g}) "
            f"@ {b.x},{b.y} {b.width}x{b.height}"
        )


def read_labels(path: Union[str, "PathLike[str]"], skip_first: bool = False) -> list[str]:
    """Read one label per line, optionally discarding the first line."""
    try:
        with open(path, encoding="utf-8") as f:
            lines = [line.rstrip("\n") for line in f]
    except OSError as exc:
        raise RuntimeError(f"Failed to load labels file {path!s}") from exc
    return lines[1:] if skip_first else lines


def _clamp(value: int, lo: int, hi: int) -> int:
    return max(lo, min(hi, value))


def interpret_detections(
    boxes: Any,
    classes: Any,
    scores: Any,
    labels: Sequence[str],
    lores_info: StreamInfo,
    main_info: StreamInfo,
    confidence_threshold: float = 0.5,
    overlap_threshold: float = 0.5,
) -> list[Detection]:
    """Turn raw network outputs into detections in main-image coordinates.

    boxes holds (ymin, xmin, ymax, xmax) fractions of the network input.
    A detection overlapping an earlier one of the same category replaces it
    only if it is more confident; otherwise it is dropped.
    """
    if lores_info.width < WIDTH or lores_info.height < HEIGHT:
        raise ValueError("low resolution stream smaller than the network input")

    box_rows = np.asarray(boxes, dtype=np.float32).reshape(-1, 4)
    class_values = np.asarray(classes).reshape(-1)
    score_values = np.asarray(scores, dtype=np.float32).reshape(-1)
    crop_y = (lores_info.height - HEIGHT) // 2
    crop_x = (lores_info.width - WIDTH) // 2

    results: list[Detection] = []
    for coords, cls, raw_score in zip(box_rows, class_values, score_values):
        score = float(raw_score)
        if score < confidence_threshold:
            continue

        # Coordinates in the image fed to the network.
        y = _clamp(int(np.float32(HEIGHT) * coords[0]), 0, HEIGHT)
        x = _clamp(int(np.float32(WIDTH) * coords[1]), 0, WIDTH)
        h = _clamp(int(np.float32(HEIGHT) * coords[2] - np.float32(y)), 0, HEIGHT)
        w = _clamp(int(np.float32(WIDTH) * coords[3] - np.float32(x)), 0, WIDTH)
        # The network sees a centre crop of the lores image.
        y += crop_y
        x += crop_x
        # The lores image is a pure scaling of the main image.
        y = y * main_info.height // lores_info.height
        x = x * main_info.width // lores_info.width
        h = h * main_info.height // lores_info.height
        w = w * main_info.width // lores_info.width

        category = int(cls)
        detection = Detection(category, labels[category], score, Rectangle(x, y, w, h))

        for k, prev in enumerate(results):
            if prev.category != category:
                continue
            overlap = prev.box.bounded_to(detection.box).area()
            if (
                overlap > overlap_threshold * prev.box.area()
                or overlap > overlap_threshold * detection.box.area()
            ):
                if detection.confidence > prev.confidence:
                    results[k] = detection
                break
        else:
            results.append(detection)
    return results


@dataclass
class ObjectDetectTfConfig(TfConfig):
    """Settings of the object detection stage."""

    confidence_threshold: float = 0.5
    overlap_threshold: float = 0.5


class ObjectDetectTfStage(TfStage):
    """Detects objects and attaches them as "object_detect.results"."""

    config_type = ObjectDetectTfConfig
    config: ObjectDetectTfConfig

    def __init__(self, app: Any, interpreter_factory: InterpreterFactory | None = None) -> None:
        super().__init__(app, WIDTH, HEIGHT, interpreter_factory)
        self.labels: list[str] = []
        self.output_results: list[Detection] = []

    def name(self) -> str:
        return NAME

    def read_extras(self, params: Mapping[str, Any]) -> None:
        self.config.confidence_threshold = float(params.get("confidence_threshold", 0.5))
        self.config.overlap_threshold = float(params.get("overlap_threshold", 0.5))
        self.labels = read_labels(str(params.get("labels_file", "")), skip_first=True)
        if self.config.verbose:
            logger.info("Read %d labels", len(self.labels))
        # A mismatch usually means the wrong model was loaded.
        if self._output_shape(0) != _OUTPUT_SHAPE:
            raise RuntimeError("ObjectDetectTfStage: unexpected output dimensions")

    def check_configuration(self) -> None:
        if self.main_stream is None:
            raise RuntimeError("ObjectDetectTfStage: Main stream is required")

    def interpret_outputs(self) -> None:
        boxes = self._output_tensor(0)
        classes = self._output_tensor(1)
        scores = self._output_tensor(2)
        count = boxes.shape[1]
        self.output_results = interpret_detections(
            boxes.reshape(-1, 4)[:count],
            classes.reshape(-1)[:count],
            scores.reshape(-1)[:count],
            self.labels,
            self.lores_info,
            self.main_stream_info,
            self.config.confidence_threshold,
            self.config.overlap_threshold,
        )
        if self.config.verbose:
            for detection in self.output_results:
                logger.info("%s", detection)

    def apply_results(self, request: Any) -> None:
        request.post_process_metadata["object_detect.results"] = list(self.output_results)


register_stage(NAME, ObjectDetectTfStage)