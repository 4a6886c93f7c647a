"""Base class and helpers for post-processing stages."""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Callable, Sequence

import numpy as np


@dataclass
class StreamInfo:
    """Geometry and format of an image stream."""

    width: int = 0
    height: int = 0
    stride: int = 0
    pixel_format: str = ""
    colour_space: Any = None


class PostProcessingStage(ABC):
    """A stage applied to every completed request.

    The base class keeps track of the parameters it was given and of where
    it is in its lifecycle; derived stages override what they need.
    """

    def __init__(self, app: Any) -> None:
        self.app = app
        self.parameters: dict[str, Any] = {}
        self.use_case: str | None = None
        self.camera_config: Any = None
        self.configured = False
        self.running = False

    @abstractmethod
    def name(self) -> str:
        """Return the registered name of the stage."""

    def read(self, params: Mapping[str, Any]) -> None:
        """Read the stage's parameters."""
        self.parameters = dict(params)

    def adjust_config(self, use_case: str, config: Any) -> None:
        """Adjust the camera configuration before it is applied."""
        self.use_case = use_case
        self.camera_config = config

    def configure(self) -> None:
        """Prepare for the configured streams."""
        self.configured = True

    def start(self) -> None:
        """Called when the camera starts."""
        self.running = True

    @abstractmethod
    def process(self, request: Any) -> bool:
        """Process a completed request; return True if it is to be dropped."""

    def stop(self) -> None:
        """Called when the camera stops."""
        self.running = False

    def teardown(self) -> None:
        """Release anything acquired in configure."""
        self.configured = False
        self.camera_config = None


def yuv420_to_rgb(src: Any, src_info: StreamInfo, dst_info: StreamInfo) -> np.ndarray:
    """Convert a YUV420 image to packed RGB, cropping from the centre.

    Returns a flat uint8 array of dst_info.height * dst_info.stride bytes.
    """
    if src_info.width < dst_info.width or src_info.height < dst_info.height:
        raise ValueError("destination image is larger than the source")
    if dst_info.stride < dst_info.width * 3:
        raise ValueError("destination stride too small for RGB rows")

    if isinstance(src, np.ndarray):
        data = src.reshape(-1).astype(np.uint8, copy=False)
    else:
        data = np.frombuffer(src, dtype=np.uint8)

    out = np.zeros((dst_info.height, dst_info.stride), dtype=np.uint8)
    if dst_info.width == 0 or dst_info.height == 0:
        return out.reshape(-1)

    off_x = ((src_info.width - dst_info.width) // 2) & ~1
    off_y = ((src_info.height - dst_info.height) // 2) & ~1
    stride = src_info.stride
    half_stride = stride // 2
    y_size = src_info.height * stride
    u_size = (src_info.height // 2) * half_stride

    rows = np.arange(dst_info.height)[:, None] + off_y
    cols = np.arange(dst_info.width)[None, :]
    y_idx = rows * stride + off_x + cols
    u_idx = y_size + (rows // 2) * half_stride + off_x // 2 + cols // 2
    v_idx = u_idx + u_size
    if data.size <= max(int(y_idx.max()), int(v_idx.max())):
        raise ValueError("source buffer too small for its stream info")

    luma = data[y_idx].astype(np.float64)
    u = data[u_idx].astype(np.float64) - 128.0
    v = data[v_idx].astype(np.float64) - 128.0

    r = luma + 1.402 * v
    g = luma - 0.345 * u - 0.714 * v
    b = luma + 1.771 * u
    rgb = np.clip(np.trunc(np.stack([r, g, b], axis=-1)), 0, 255).astype(np.uint8)
    out[:, : dst_info.width * 3] = rgb.reshape(dst_info.height, dst_info.width * 3)
    return out.reshape(-1)


def execution_time(f: Callable[..., Any], *args: Any, **kwargs: Any) -> float:
    """Run f(*args, **kwargs) and return the elapsed time in microseconds."""
    t1 = time.perf_counter()
    f(*args, **kwargs)
    t2 = time.perf_counter()
    return (t2 - t1) * 1e6


def get_json_array(
    params: Mapping[str, Any], key: str, default: Sequence[Any] = ()
) -> list[Any]:
    """Read an array parameter, padding it with trailing entries of default."""
    values: list[Any] = []
    if key in params:
        raw = params[key]
        values = list(raw.values()) if isinstance(raw, Mapping) else list(raw)
    values.extend(list(default)[len(values):])
    return values


StageFactory = Callable[[Any], PostProcessingStage]

_STAGES: dict[str, StageFactory] = {}


def register_stage(name: str, factory: StageFactory | None = None) -> Any:
    """Register a stage factory under name; usable as a decorator."""
    if factory is None:

        def decorator(func: StageFactory) -> StageFactory:
            _STAGES[name] = func
            return func

        return decorator
    _STAGES[name] = factory
    return factory


def get_post_processing_stages() -> Mapping[str, StageFactory]:
    """Return a read-only view of the registered stages."""
    return MappingProxyType(_STAGES)