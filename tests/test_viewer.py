import pytest

from slamkit.viewer import ThreadControl, ViewerSettings, parse_viewer_settings

VIEWER_YAML = """%YAML:1.0
Camera.fps: 25.0
Camera.width: 1241
Camera.height: 376
Viewer.ViewpointX: 0.0
Viewer.ViewpointY: -0.7
Viewer.ViewpointZ: -1.8
Viewer.ViewpointF: 500.0
"""


def test_parse_viewer_settings_reads_fields():
    settings = parse_viewer_settings(VIEWER_YAML)
    assert settings.fps == 25.0
    assert (settings.image_width, settings.image_height) == (1241.0, 376.0)
    assert settings.viewpoint_y == -0.7
    assert settings.viewpoint_z == -1.8
    assert settings.viewpoint_f == 500.0


def test_frame_period_matches_fps():
    settings = parse_viewer_settings(VIEWER_YAML)
    assert settings.frame_period_ms * settings.fps == pytest.approx(1000.0)


def test_low_fps_falls_back_to_thirty():
    settings = parse_viewer_settings(VIEWER_YAML.replace("25.0", "0.5"))
    assert settings.fps == 30.0


def test_missing_size_falls_back_to_vga():
    text = VIEWER_YAML.replace("Camera.height: 376\n", "")
    settings = parse_viewer_settings(text)
    assert (settings.image_width, settings.image_height) == (640.0, 480.0)


def test_empty_document_gives_defaults():
    assert parse_viewer_settings("%YAML:1.0\n") == ViewerSettings()


def test_bad_value_raises():
    with pytest.raises(ValueError):
        parse_viewer_settings("%YAML:1.0\nCamera.fps: fast\n")


def test_new_control_is_stopped_and_finished():
    control = ThreadControl()
    assert control.is_stopped() is True
    assert control.is_finished() is True
    assert control.check_finish() is False


def test_stop_request_ignored_while_stopped():
    control = ThreadControl()
    control.request_stop()
    assert control.stop() is False


def test_stop_handshake_after_release():
    control = ThreadControl()
    control.release()
    assert control.is_stopped() is False
    control.request_stop()
    assert control.stop() is True
    assert control.is_stopped() is True
    # the request is consumed
    control.release()
    assert control.stop() is False


def test_finish_request_blocks_stop():
    control = ThreadControl()
    control.release()
    control.request_stop()
    control.request_finish()
    assert control.check_finish() is True
    assert control.stop() is False
    assert control.is_stopped() is False


def test_set_finish_marks_finished():
    control = ThreadControl()
    control.set_finish()
    assert control.is_finished() is True