"""Pose estimation and the skeleton drawn from it."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from enum import IntEnum
from typing import Any, NamedTuple, TypeVar

import numpy as np

from .stage import StreamInfo, register_stage
from .tfstage import InterpreterFactory, TfStage

logger = logging.getLogger(__name__)

NAME = "pose_estimation_tf"

FEATURE_SIZE = 17
HEATMAP_DIMS = 9
INPUT_SIZE = 257


class Feature(IntEnum):
    """Body keypoints, in the order the model reports them."""

    NOSE = 0
    LEFT_EYE = 1
    RIGHT_EYE = 2
    LEFT_EAR = 3
    RIGHT_EAR = 4
    LEFT_SHOULDER = 5
    RIGHT_SHOULDER = 6
    LEFT_ELBOW = 7
    RIGHT_ELBOW = 8
    LEFT_WRIST = 9
    RIGHT_WRIST = 10
    LEFT_HIP = 11
    RIGHT_HIP = 12
    LEFT_KNEE = 13
    RIGHT_KNEE = 14
    LEFT_ANKLE = 15
    RIGHT_ANKLE = 16


class PosePoint(NamedTuple):
    """An integer image location."""

    x: int
    y: int


class PoseResult(NamedTuple):
    """Keypoint locations in main-image coordinates and their confidences."""

    locations: list[PosePoint]
    confidences: list[float]


# Limb segments, in drawing order.
_SKELETON = (
    (Feature.LEFT_SHOULDER, Feature.RIGHT_SHOULDER),
    (Feature.LEFT_SHOULDER, Feature.LEFT_ELBOW),
    (Feature.LEFT_SHOULDER, Feature.LEFT_HIP),
    (Feature.RIGHT_SHOULDER, Feature.RIGHT_ELBOW),
    (Feature.RIGHT_SHOULDER, Feature.RIGHT_HIP),
    (Feature.LEFT_ELBOW, Feature.LEFT_WRIST),
    (Feature.RIGHT_ELBOW, Feature.RIGHT_WRIST),
    (Feature.LEFT_HIP, Feature.RIGHT_HIP),
    (Feature.LEFT_HIP, Feature.LEFT_KNEE),
    (Feature.LEFT_KNEE, Feature.LEFT_ANKLE),
    (Feature.RIGHT_KNEE, Feature.RIGHT_HIP),
    (Feature.RIGHT_KNEE, Feature.RIGHT_ANKLE),
)


def interpret_pose(heatmaps: Any, offsets: Any, main_info: StreamInfo) -> PoseResult:
    """Locate each keypoint from the heatmap peak plus its offset.

    heatmaps has HEATMAP_DIMS x HEATMAP_DIMS x FEATURE_SIZE values and
    offsets twice as many (y offsets, then x offsets, per cell).
    """
    heat = np.asarray(heatmaps, dtype=np.float32).reshape(
        HEATMAP_DIMS * HEATMAP_DIMS, FEATURE_SIZE
    )
    offs = np.asarray(offsets, dtype=np.float32).reshape(
        HEATMAP_DIMS, HEATMAP_DIMS, 2 * FEATURE_SIZE
    )
    # argmax returns the first maximum, as a strict ">" scan from cell 0 does.
    best = np.argmax(heat, axis=0)

    locations: list[PosePoint] = []
    confidences: list[float] = []
    for feature, cell in enumerate(best):
        y, x = divmod(int(cell), HEATMAP_DIMS)
        confidences.append(float(heat[cell, feature]))
        base_y = np.float32((y * main_info.height) // (HEATMAP_DIMS - 1))
        base_x = np.float32((x * main_info.width) // (HEATMAP_DIMS - 1))
        loc_y = int(base_y + offs[y, x, feature])
        loc_x = int(base_x + offs[y, x, feature + FEATURE_SIZE])
        locations.append(PosePoint(loc_x, loc_y))
    return PoseResult(locations, confidences)


P = TypeVar("P")


def pose_segments(
    locations: Sequence[P], confidences: Sequence[float], threshold: float
) -> list[tuple[P, P]]:
    """Return the limb segments whose two ends are both above threshold."""
    if len(locations) < FEATURE_SIZE or len(confidences) < FEATURE_SIZE:
        raise ValueError(f"expected {FEATURE_SIZE} keypoints")
    return [
        (locations[a], locations[b])
        for a, b in _SKELETON
        if confidences[a] > threshold and confidences[b] > threshold
    ]


class PoseEstimationTfStage(TfStage):
    """Estimates a single pose and attaches it as metadata."""

    def __init__(self, app: Any, interpreter_factory: InterpreterFactory | None = None) -> None:
        super().__init__(app, INPUT_SIZE, INPUT_SIZE, interpreter_factory)
        self.locations: list[PosePoint] = []
        self.confidences: list[float] = []

    def name(self) -> str:
        return NAME

    def read_extras(self, params: Mapping[str, Any]) -> None:
        shape = self._output_shape(0)
        # A mismatch usually means the wrong model was loaded.
        if shape[:4] != (1, HEATMAP_DIMS, HEATMAP_DIMS, FEATURE_SIZE):
            raise RuntimeError("PoseEstimationTfStage: Unexpected output dimensions")

    def check_configuration(self) -> None:
        if self.main_stream is None:
            raise RuntimeError("PoseEstimationTfStage: Main stream is required")

    def interpret_outputs(self) -> None:
        result = interpret_pose(
            self._output_tensor(0), self._output_tensor(1), self.main_stream_info
        )
        self.locations, self.confidences = result

    def apply_results(self, request: Any) -> None:
        metadata = request.post_process_metadata
        metadata["pose_estimation.locations"] = [list(self.locations)]
        metadata["pose_estimation.confidences"] = [list(self.confidences)]


register_stage(NAME, PoseEstimationTfStage)