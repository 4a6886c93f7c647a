import time

import numpy as np
import pytest

from camstages.stage import (
    PostProcessingStage,
    StreamInfo,
    execution_time,
    get_json_array,
    get_post_processing_stages,
    register_stage,
    yuv420_to_rgb,
)


def _yuv(width, height, y, u, v):
    stride = width
    y_plane = np.full(height * stride, y, dtype=np.uint8)
    chroma = (height // 2) * (stride // 2)
    u_plane = np.full(chroma, u, dtype=np.uint8)
    v_plane = np.full(chroma, v, dtype=np.uint8)
    return np.concatenate([y_plane, u_plane, v_plane]), StreamInfo(width, height, stride)


class _Dummy(PostProcessingStage):
    def name(self):
        return "dummy"

    def process(self, request):
        return True


def test_register_and_lookup():
    def factory(app):
        return _Dummy(app)

    register_stage("test_stage_direct", factory)
    stages = get_post_processing_stages()
    assert stages["test_stage_direct"] is factory
    with pytest.raises(TypeError):
        stages["other"] = factory


def test_register_as_decorator():
    @register_stage("test_stage_decorated")
    def factory(app):
        return _Dummy(app)

    stage = get_post_processing_stages()["test_stage_decorated"]("app")
    assert stage.app == "app"
    assert stage.name() == "dummy"


def test_base_class_is_abstract():
    with pytest.raises(TypeError):
        PostProcessingStage(None)


def test_subclass_defaults():
    register_stage("test_stage_defaults", _Dummy)
    app = object()
    stage = get_post_processing_stages()["test_stage_defaults"](app)
    stage.read({})
    stage.configure()
    stage.start()
    assert stage.app is app
    assert stage.name() == "dummy"
    assert stage.process(object()) is True


def test_get_json_array_pads_from_default():
    assert get_json_array({"k": [1]}, "k", [7, 8, 9]) == [1, 8, 9]
    assert get_json_array({}, "k", [7, 8]) == [7, 8]
    assert get_json_array({"k": [1, 2, 3]}, "k", [7]) == [1, 2, 3]
    assert get_json_array({}, "k") == []


def test_execution_time_runs_function():
    calls = []
    elapsed = execution_time(lambda a, b=0: calls.append((a, b)), 1, b=2)
    assert calls == [(1, 2)]
    assert elapsed >= 0.0
    assert execution_time(time.sleep, 0.01) >= 10000


def test_gray_image_converts_to_gray():
    src, info = _yuv(6, 4, 77, 128, 128)
    dst = StreamInfo(6, 4, 18)
    out = yuv420_to_rgb(src, info, dst)
    assert out.shape == (dst.height * dst.stride,)
    assert np.all(out == 77)


def test_row_padding_is_zero():
    src, info = _yuv(6, 4, 77, 128, 128)
    dst = StreamInfo(5, 3, 16)
    out = yuv420_to_rgb(src.tobytes(), info, dst)
    assert out.shape == (48,)
    rows = out.reshape(3, 16).tolist()
    assert rows == [[77] * 15 + [0]] * 3


def test_clamping():
    src, info = _yuv(4, 2, 255, 255, 255)
    out = yuv420_to_rgb(src, info, StreamInfo(4, 2, 12)).reshape(-1, 3)
    assert set(out[:, 0].tolist()) == {255}
    assert set(out[:, 2].tolist()) == {255}
    assert max(out[:, 1].tolist()) < 255
    src, info = _yuv(4, 2, 0, 0, 0)
    out = yuv420_to_rgb(src, info, StreamInfo(4, 2, 12)).reshape(-1, 3)
    assert set(out[:, 0].tolist()) == {0}
    assert set(out[:, 2].tolist()) == {0}
    assert min(out[:, 1].tolist()) > 0


def test_centre_crop_offset():
    src, info = _yuv(8, 4, 0, 128, 128)
    src[: 8 * 4] = np.tile(np.arange(8, dtype=np.uint8) * 10, 4)
    out = yuv420_to_rgb(src, info, StreamInfo(4, 4, 12)).reshape(4, 4, 3)
    for col in range(4):
        assert np.all(out[:, col, :] == src[2 + col])


def test_straggling_pixels_match_aligned_blocks():
    src = np.random.default_rng(0).integers(0, 256, 48, dtype=np.uint8)
    info = StreamInfo(8, 4, 8)
    full = yuv420_to_rgb(src, info, StreamInfo(8, 4, 24)).reshape(4, 24)
    part = yuv420_to_rgb(src, info, StreamInfo(7, 3, 21)).reshape(3, 21)
    assert np.array_equal(part, full[:3, :21])


def test_conversion_errors():
    src, info = _yuv(4, 2, 0, 128, 128)
    with pytest.raises(ValueError):
        yuv420_to_rgb(src, info, StreamInfo(6, 2, 18))
    with pytest.raises(ValueError):
        yuv420_to_rgb(src, info, StreamInfo(4, 2, 8))
    with pytest.raises(ValueError):
        yuv420_to_rgb(src[:8], info, StreamInfo(4, 2, 12))