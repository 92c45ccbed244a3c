import threading

import pytest


class FakeRuntime:
    """In-memory runtime recording start/stop calls

    start() runs the next queued behaviour (a callable or an exception);
    with nothing queued it returns immediately as a clean exit.
    """

    def __init__(self):
        self.start_calls = []
        self.stop_calls = []
        self.behaviours = []
        self.stopped = threading.Event()
        self.stop_error = None

    def start(self, image_path, image_name, config):
        self.start_calls.append((image_path, image_name, config))
        if self.behaviours:
            behaviour = self.behaviours.pop(0)
            if isinstance(behaviour, BaseException):
                raise behaviour
            return behaviour()
        return 0

    def stop(self, image_name, container_name="", force=False):
        self.stop_calls.append((image_name, container_name, force))
        self.stopped.set()
        if self.stop_error is not None:
            raise self.stop_error


@pytest.fixture
def fake_runtime():
    return FakeRuntime()


@pytest.fixture
def image_file(tmp_path):
    path = tmp_path / "image.tar"
    path.write_bytes(b"fake image tarball")
    return str(path)
