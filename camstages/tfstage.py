"""Base class for post-processing stages that run a TensorFlow Lite model."""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Callable, Optional

import numpy as np

from .stage import PostProcessingStage, StreamInfo, execution_time, yuv420_to_rgb

logger = logging.getLogger(__name__)

# Called as factory(model_file, num_threads); num_threads is None to leave the
# interpreter's own default. The returned object follows the TFLite interpreter
# interface: allocate_tensors, get_input_details, get_output_details,
# set_tensor, invoke and get_tensor.
InterpreterFactory = Callable[[str, Optional[int]], Any]


@dataclass
class TfConfig:
    """Settings shared by every TensorFlow Lite stage."""

    number_of_threads: int = 3
    refresh_rate: int = 5
    model_file: str = ""
    verbose: bool = False
    normalisation_offset: float = 127.5
    normalisation_scale: float = 127.5

    def update_from(self, params: Mapping[str, Any]) -> None:
        """Read the settings from stage parameters, with their usual defaults."""
        self.number_of_threads = int(params.get("number_of_threads", 2))
        self.refresh_rate = int(params.get("refresh_rate", 5))
        self.model_file = str(params.get("model_file", ""))
        self.verbose = bool(int(params.get("verbose", 0)))
        self.normalisation_offset = float(params.get("normalisation_offset", 127.5))
        self.normalisation_scale = float(params.get("normalisation_scale", 127.5))


class TfStage(PostProcessingStage):
    """Runs a model asynchronously on the low resolution stream.

    Derived stages provide name() and override read_extras,
    check_configuration, interpret_outputs and apply_results.
    """

    config_type: type[TfConfig] = TfConfig

    def __init__(
        self,
        app: Any,
        tf_w: int,
        tf_h: int,
        interpreter_factory: InterpreterFactory | None = None,
    ) -> None:
        super().__init__(app)
        if tf_w <= 0 or tf_h <= 0:
            raise ValueError("TfStage: Bad TFLite input dimensions")
        self.tf_w = tf_w
        self.tf_h = tf_h
        self.config = self.config_type()
        self.interpreter_factory = interpreter_factory
        self.interpreter: Any = None
        self.lores_stream: Any = None
        self.lores_info = StreamInfo()
        self.main_stream: Any = None
        self.main_stream_info = StreamInfo()
        self._input_index: Any = None
        self._input_shape: tuple[int, ...] = ()
        self._input_dtype = np.dtype(np.uint8)
        self._future_lock = threading.Lock()
        self._output_lock = threading.Lock()
        self._worker: threading.Thread | None = None
        self._lores_copy = b""

    def read(self, params: Mapping[str, Any]) -> None:
        self.config.update_from(params)
        self._initialise()
        self.read_extras(params)

    def _initialise(self) -> None:
        if self.interpreter_factory is None:
            raise RuntimeError("TfStage: Failed to load model")
        threads = None if self.config.number_of_threads == -1 else self.config.number_of_threads
        try:
            interpreter = self.interpreter_factory(self.config.model_file, threads)
        except Exception as exc:
            raise RuntimeError("TfStage: Failed to load model") from exc
        if interpreter is None:
            raise RuntimeError("TfStage: Failed to construct interpreter")
        logger.info("TfStage: Loaded model %s", self.config.model_file)

        try:
            interpreter.allocate_tensors()
        except Exception as exc:
            raise RuntimeError("TfStage: Failed to allocate tensors") from exc

        details = interpreter.get_input_details()[0]
        dtype = np.dtype(details["dtype"])
        if dtype != np.uint8 and dtype != np.float32:
            raise RuntimeError("TfStage: Input tensor data type not supported")
        shape = tuple(int(d) for d in details["shape"])
        size = int(np.prod(shape)) * dtype.itemsize
        check = self.tf_w * self.tf_h * 3 * dtype.itemsize  # assume RGB
        if check != size:
            raise RuntimeError("TfStage: Input tensor size mismatch")

        self.interpreter = interpreter
        self._input_index = details["index"]
        self._input_shape = shape
        self._input_dtype = dtype

    def _output_tensor(self, i: int) -> np.ndarray:
        """Return the model's i-th output tensor."""
        details = self.interpreter.get_output_details()[i]
        return np.asarray(self.interpreter.get_tensor(details["index"]))

    def _output_shape(self, i: int) -> tuple[int, ...]:
        """Return the shape of the model's i-th output tensor."""
        details = self.interpreter.get_output_details()[i]
        return tuple(int(d) for d in details["shape"])

    def configure(self) -> None:
        self.lores_stream = self.app.lores_stream()
        if self.lores_stream is not None:
            self.lores_info = self.app.get_stream_info(self.lores_stream)
            if self.config.verbose:
                logger.info(
                    "TfStage: Low resolution stream is %dx%d",
                    self.lores_info.width,
                    self.lores_info.height,
                )
            if self.tf_w > self.lores_info.width or self.tf_h > self.lores_info.height:
                logger.error("TfStage: WARNING: Low resolution image too small")
                self.lores_stream = None
        elif self.config.verbose:
            logger.info("TfStage: no low resolution stream")

        self.main_stream = self.app.get_main_stream()
        if self.main_stream is not None:
            self.main_stream_info = self.app.get_stream_info(self.main_stream)
            if self.config.verbose:
                logger.info(
                    "TfStage: Main stream is %dx%d",
                    self.main_stream_info.width,
                    self.main_stream_info.height,
                )
        elif self.config.verbose:
            logger.info("TfStage: No main stream")

        self.check_configuration()

    def process(self, request: Any) -> bool:
        if self.lores_stream is None:
            return False

        with self._future_lock:
            rate = self.config.refresh_rate
            idle = self._worker is None or not self._worker.is_alive()
            if rate and request.sequence % rate == 0 and idle:
                # Take a private copy so the worker never reads the live buffer.
                self._lores_copy = bytes(request.buffers[self.lores_stream])
                self._worker = threading.Thread(target=self._inference_job, daemon=True)
                self._worker.start()

        with self._output_lock:
            self.apply_results(request)
        return False

    def _inference_job(self) -> None:
        try:
            elapsed = execution_time(self.run_inference)
        except Exception:
            logger.exception("TfStage: inference failed")
            return
        if self.config.verbose:
            logger.info("TfStage: Inference time: %.0f us", elapsed)

    def run_inference(self) -> None:
        """Convert the lores copy to RGB, run the model and interpret its outputs."""
        tf_info = StreamInfo(width=self.tf_w, height=self.tf_h, stride=self.tf_w * 3)
        rgb = yuv420_to_rgb(self._lores_copy, self.lores_info, tf_info)
        if self._input_dtype == np.uint8:
            tensor = rgb
        else:
            tensor = (
                (rgb.astype(np.float32) - np.float32(self.config.normalisation_offset))
                / np.float32(self.config.normalisation_scale)
            ).astype(np.float32)
        self.interpreter.set_tensor(self._input_index, tensor.reshape(self._input_shape))

        try:
            self.interpreter.invoke()
        except Exception as exc:
            raise RuntimeError("TfStage: Failed to invoke TFLite") from exc

        with self._output_lock:
            self.interpret_outputs()

    def stop(self) -> None:
        worker = self._worker
        if worker is not None:
            worker.join()

    def read_extras(self, params: Mapping[str, Any]) -> None:
        """Read parameters specific to the derived stage; may check the model."""

    def check_configuration(self) -> None:
        """Check the stream configuration, raising if it is unusable."""

    def interpret_outputs(self) -> None:
        """Turn the model outputs into results; runs on the inference thread."""

    def apply_results(self, request: Any) -> None:
        """Attach the latest results to the request."""