"""Preview windows and the YUV420 to RGB conversion they use."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

import numpy as np

from .stage import StreamInfo

logger = logging.getLogger(__name__)

DoneCallback = Callable[[int], None]
PreviewFactory = Callable[["PreviewOptions"], "Preview"]


class ColourSpace(Enum):
    """Colour spaces an image stream may carry."""

    SYCC = "sycc"
    SMPTE170M = "smpte170m"
    REC709 = "rec709"
    RAW = "raw"


@dataclass
class PreviewOptions:
    """Options that choose and place the preview window."""

    nopreview: bool = False
    qt_preview: bool = False
    fullscreen: bool = False
    preview_x: int = 0
    preview_y: int = 0
    preview_width: int = 0
    preview_height: int = 0


class Preview(ABC):
    """A window that shows camera buffers."""

    def __init__(self, options: PreviewOptions) -> None:
        self.options = options
        self.done_callback: DoneCallback | None = None

    def set_done_callback(self, callback: DoneCallback) -> None:
        """Set the callback told when a buffer may be recycled."""
        self.done_callback = callback

    def _done(self, fd: int) -> None:
        if self.done_callback is not None:
            self.done_callback(fd)

    def set_info_text(self, text: str) -> None:
        """Show some status text, if the window can."""

    @abstractmethod
    def show(self, fd: int, data: Any, info: StreamInfo) -> None:
        """Display a buffer; its fd comes back through the done callback."""

    @abstractmethod
    def reset(self) -> None:
        """Forget current buffers, ready to show new ones."""

    def quit(self) -> bool:
        """Return True if the window has been shut down."""
        return False

    @abstractmethod
    def max_image_size(self) -> tuple[int, int]:
        """Return the largest (width, height) allowed; zeroes mean no limit."""


class NullPreview(Preview):
    """A preview that shows nothing, handing every buffer straight back."""

    def __init__(self, options: PreviewOptions) -> None:
        super().__init__(options)
        self.frames_shown = 0
        logger.debug("Running without preview window")

    def show(self, fd: int, data: Any, info: StreamInfo) -> None:
        self.frames_shown += 1
        self._done(fd)

    def reset(self) -> None:
        self.frames_shown = 0

    def max_image_size(self) -> tuple[int, int]:
        return (0, 0)

    def set_info_text(self, text: str) -> None:
        logger.info("%s", text)


# (Y offset, coeffY, coeffVR, coeffUG, coeffVG, coeffUB)
_JPEG = (0, 1.0, 1.402, -0.344, -0.714, 1.772)
_SMPTE170M = (16, 1.164, 1.596, -0.392, -0.813, 2.017)
_REC709 = (16, 1.164, 1.793, -0.213, -0.533, 2.112)


def _coefficients(colour_space: Any) -> tuple[int, float, float, float, float, float]:
    if colour_space == ColourSpace.SMPTE170M:
        return _SMPTE170M
    if colour_space == ColourSpace.REC709:
        return _REC709
    if colour_space != ColourSpace.SYCC:
        logger.info("Preview: unexpected colour space %s", colour_space)
    return _JPEG


def yuv420_to_rgb_scaled(data: Any, info: StreamInfo, width: int, height: int) -> np.ndarray:
    """Resample a YUV420 image to width x height RGB, nearest-neighbour.

    Adjacent output pixel pairs share their U and V samples. Returns a
    (height, width, 3) uint8 array.
    """
    if width <= 0 or height <= 0 or width % 2 or height % 2:
        raise ValueError("output dimensions must be positive and even")
    if isinstance(data, np.ndarray):
        buf = data.reshape(-1).astype(np.uint8, copy=False)
    else:
        buf = np.frombuffer(data, dtype=np.uint8)

    offset_y, c_y, c_vr, c_ug, c_vg, c_ub = (np.float32(c) for c in _coefficients(info.colour_space))
    x_step = (info.width << 16) // width
    y_step = (info.height << 16) // height
    half_stride = info.stride >> 1

    rows = (np.arange(height, dtype=np.int64) * y_step) >> 16
    pairs = np.arange(width // 2, dtype=np.int64)
    pos0 = (x_step >> 1) + 2 * pairs * x_step
    pos1 = pos0 + x_step

    y_base = (rows * info.stride)[:, None]
    u_base = (((4 * info.height + rows) >> 1) * half_stride)[:, None]
    v_base = (((5 * info.height + rows) >> 1) * half_stride)[:, None]
    y0_idx = y_base + (pos0 >> 16)[None, :]
    y1_idx = y_base + (pos1 >> 16)[None, :]
    u_idx = u_base + (pos1 >> 17)[None, :]
    v_idx = v_base + (pos1 >> 17)[None, :]
    if buf.size <= max(int(y1_idx.max()), int(v_idx.max())):
        raise ValueError("buffer too small for its stream info")

    y0 = (buf[y0_idx].astype(np.int32) - int(offset_y)).astype(np.float32)
    y1 = (buf[y1_idx].astype(np.int32) - int(offset_y)).astype(np.float32)
    u = (buf[u_idx].astype(np.int32) - 128).astype(np.float32)
    v = (buf[v_idx].astype(np.int32) - 128).astype(np.float32)

    def pixel(luma: np.ndarray) -> np.ndarray:
        r = c_y * luma + c_vr * v
        g = c_y * luma + c_ug * u + c_vg * v
        b = c_y * luma + c_ub * u
        return np.stack([r, g, b], axis=-1)

    rgb = np.stack([pixel(y0), pixel(y1)], axis=2)
    rgb = np.clip(np.trunc(rgb), 0, 255).astype(np.uint8)
    return rgb.reshape(height, width, 3)


def make_preview(
    options: PreviewOptions, backends: Mapping[str, PreviewFactory] | None = None
) -> Preview:
    """Choose a preview window.

    backends maps "qt", "egl" and "drm" to factories. A Qt preview is used,
    without fallback, when asked for and available; otherwise EGL is tried,
    then DRM, and if both fail a NullPreview is returned.
    """
    backends = backends or {}
    if options.nopreview:
        return NullPreview(options)
    if options.qt_preview and "qt" in backends:
        preview = backends["qt"](options)
        logger.info("Made QT preview window")
        return preview
    for key, label in (("egl", "X/EGL"), ("drm", "DRM")):
        factory = backends.get(key)
        if factory is None:
            continue
        try:
            preview = factory(options)
        except Exception as exc:
            logger.debug("%s preview failed: %s", label, exc)
            continue
        logger.info("Made %s preview window", label)
        return preview
    logger.info("Preview window unavailable")
    return NullPreview(options)