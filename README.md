# camstages

Building blocks for post-processing camera frames: piecewise linear
functions, a stage base class with a registry, YUV420 to RGB conversion,
stages that interpret neural-network outputs (object detection, pose
estimation, segmentation) and a preview-window interface.

## Installation

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## Modules

### `camstages.pwl`

Piecewise linear functions.

- `Pwl(points)` holds control points (`Point` objects or `(x, y)` pairs).
  `Pwl.from_flat([x0, y0, x1, y1, ...])` builds one from a flat list. It
  raises `ValueError` for an odd count, for x values that are not strictly
  increasing, or for fewer than two points.
- `eval(x, span=None)` evaluates the function, extrapolating linearly past
  the ends. `find_span(x, span)` gives the segment index.
- `append` and `prepend` add a point only if it lies beyond the current
  ends by more than `eps`.
- `domain()` and `range()` return an `Interval`, which has `contains`,
  `clip` and `length`.
- `invert(xy, span=-1)` finds the closest point of the curve to `xy`,
  searching from segment `span + 1`. It returns an `Inversion` of
  `(kind, perp, span)`, where `kind` is a `PerpType`.
- `compose(other)` applies `self` and then `other`.
- `map(f)` returns `f(x, y)` for every control point.
- `Pwl.map2(a, b, f)` and `Pwl.combine(a, b, f)` work at the knots of
  either function.
- `match_domain(domain, clip=True)` extends the curve, either flat or by
  extrapolation.
- `generate_lut()` returns the values at x = 0, 1, …, up to the end of the
  domain.
- `pwl *= d` scales the y values. `debug(file)` prints the points, to
  stderr by default.

```python
from camstages.pwl import Pwl, Point

curve = Pwl([Point(0, 0), Point(10, 20), Point(20, 25)])
print(curve.eval(5))          # 10.0
print(len(curve.generate_lut()))  # 21 values, for x = 0..20
```

### `camstages.stage`

- `StreamInfo` describes a stream: `width`, `height`, `stride`,
  `pixel_format` and `colour_space`.
- `PostProcessingStage` is the abstract base. Subclasses provide `name()`
  and `process(request)`; `process` returns `True` if the request is to be
  dropped. The base versions of the lifecycle hooks only record state:
  - `read` stores the parameters.
  - `adjust_config` stores the use case and the configuration.
  - `configure` and `teardown` set and clear `configured`.
  - `start` and `stop` set and clear `running`.
- `yuv420_to_rgb(src, src_info, dst_info)` converts YUV420 to packed RGB,
  cropping from the centre. It returns a flat `uint8` array of
  `dst_info.height * dst_info.stride` bytes.
- `execution_time(f, *args, **kwargs)` returns the time the call took, in
  microseconds.
- `get_json_array(params, key, default)` reads a list parameter and pads it
  with the trailing entries of `default`.
- `register_stage(name, factory)` adds a stage to the registry. It can also
  be used as a decorator.
- `get_post_processing_stages()` returns a read-only view of the registry.

### `camstages.tfstage`

- `TfConfig` holds the shared settings. `update_from(params)` reads them
  with these defaults: 2 threads, refresh rate 5, no model file, not
  verbose, and normalisation offset and scale of 127.5.
- `TfStage` runs a model on a background thread:
  - It runs on every `refresh_rate`-th request of the low resolution
    stream, and only while no earlier run is still going.
  - It converts a copy of the lores frame to RGB. For float models it
    normalises the values.
  - It calls `interpret_outputs()` when the run finishes.
  - `apply_results(request)` is called on every processed request.

  Subclasses override `read_extras`, `check_configuration`,
  `interpret_outputs` and `apply_results`.

The interpreter is not bundled. Pass `interpreter_factory(model_file,
num_threads)` when you create the stage. It must return an object with the
TFLite interpreter methods:

- `allocate_tensors`
- `get_input_details`
- `get_output_details`
- `set_tensor`
- `invoke`
- `get_tensor`

Without a factory, `read` raises `RuntimeError`.

The stage expects two further objects:

- The application object passed as `app`, which must provide
  `lores_stream()`, `get_main_stream()` and `get_stream_info(stream)`.
- Each request, which must have `sequence`, `buffers` (a mapping from
  stream to bytes) and a `post_process_metadata` dict.

### `camstages.detection`

- `Rectangle` has `area()` and `bounded_to(other)`, which gives the
  intersection of two rectangles.
- `Detection` prints as `name[category] (confidence) @ x,y wxh`.
- `read_labels(path, skip_first=False)` reads one label per line.
- `interpret_detections(...)` turns box, class and score outputs for a
  300×300 input into detections in main-image coordinates:
  - It drops detections whose score is below the confidence threshold.
  - Where two detections of the same category overlap by more than the
    overlap threshold, it keeps the more confident one.
- `ObjectDetectTfStage` (registered as `object_detect_tf`) attaches the
  detections as `"object_detect.results"`.

### `camstages.pose`

- `Feature` enumerates the 17 keypoints.
- `interpret_pose(heatmaps, offsets, main_info)` returns a `PoseResult` of
  keypoint locations and their confidences.
- `pose_segments(locations, confidences, threshold)` lists the limb
  segments whose two ends are both above the threshold.
- `PoseEstimationTfStage` (registered as `pose_estimation_tf`, for a
  257×257 input) attaches `"pose_estimation.locations"` and
  `"pose_estimation.confidences"`.

### `camstages.segmentation`

- `interpret_segmentation(output, num_categories)` returns the per-pixel
  category map and a histogram of how many pixels fall in each category.
- `top_categories(histogram, labels, threshold)` lists the largest bins that
  hold at least `threshold` pixels.
- `draw_segmentation(buffer, segmentation, info, num_labels)` writes the
  map, in grey, into the bottom right corner of a writable YUV420 buffer.
- `SegmentationTfStage` (registered as `segmentation_tf`) attaches a
  `Segmentation` as `"segmentation.result"`. It also draws the map unless
  `draw` is 0.

Stages register themselves when their module is imported. Each factory in
the registry takes only `app`, so a stage created from the registry has no
interpreter factory.

### `camstages.preview`

- `Preview` is the abstract window interface:
  - `show(fd, data, info)` displays a buffer. Its fd comes back through the
    callback set by `set_done_callback`.
  - `reset()` forgets the current buffers.
  - `quit()` reports whether the window has been shut down.
  - `max_image_size()` returns the largest allowed image size.
  - `set_info_text(text)` shows status text, if the window can.
- `NullPreview` hands every buffer straight back. It counts them in
  `frames_shown` and logs any info text.
- `yuv420_to_rgb_scaled(data, info, width, height)` resamples YUV420 to a
  `(height, width, 3)` RGB array, using nearest neighbours. The conversion
  coefficients depend on the `ColourSpace` of the stream.
- `make_preview(options, backends)` picks a preview from `PreviewOptions`:
  - If `nopreview` is set, it returns a `NullPreview`.
  - If `qt_preview` is set and a `"qt"` factory is given, it uses that
    factory.
  - Otherwise it tries the `"egl"` factory, then the `"drm"` factory.
  - If neither works, it falls back to `NullPreview`.

## What the package does not do

- It includes no real preview windows (Qt, X/EGL or DRM). `make_preview`
  only chooses among factories that you supply.
- It includes no model interpreter and no camera application: both are
  supplied by the caller.
- It draws nothing on images for pose estimation. `pose_segments` returns
  the line segments, and drawing them is left to the caller.
- It has no command-line program.