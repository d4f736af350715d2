"""
Shared pytest fixtures for contract tests.
"""
import io
import queue
import threading
from fractions import Fraction
from unittest.mock import MagicMock, Mock

import pytest

from streamer.media.playlist import MediaFile, MediaKind
from streamer.media.probe import MediaProperties


def make_playlist(*names, directory="/videos"):
    """MediaFile entries for the given basenames under one directory."""
    return [MediaFile(path=f"{directory}/{name}", kind=MediaKind.VIDEO) for name in names]


def video_props(width=1920, height=1080, pix_fmt="yuv420p", rate="30/1", sample_rate=44100, channels=2):
    num, _, den = rate.partition("/")
    return MediaProperties(
        width=width,
        height=height,
        pixel_format=pix_fmt,
        frame_rate=Fraction(int(num), int(den or 1)),
        sample_rate=sample_rate,
        channels=channels,
    )


@pytest.fixture
def playlist_of():
    return make_playlist


@pytest.fixture
def props():
    return video_props


@pytest.fixture
def fake_prober():
    """
    Prober whose results are looked up by basename.

    Assign prober.results[basename] = MediaProperties or an exception instance.
    """
    prober = Mock()
    prober.results = {}

    def probe(path, kind):
        result = prober.results[path.rsplit("/", 1)[-1]]
        if isinstance(result, Exception):
            raise result
        if kind is MediaKind.VIDEO:
            return MediaProperties(
                width=result.width,
                height=result.height,
                pixel_format=result.pixel_format,
                frame_rate=result.frame_rate,
            )
        return MediaProperties(sample_rate=result.sample_rate, channels=result.channels)

    prober.probe.side_effect = probe
    return prober


@pytest.fixture
def fake_process():
    """
    Factory for Popen stand-ins with in-memory output streams.

    The returned process is alive until terminate() or kill() is called.
    """
    def make(stdout=b"", stderr=b"", pid=4242):
        process = MagicMock()
        process.pid = pid
        process.stdout = io.BytesIO(stdout)
        process.stderr = io.BytesIO(stderr)
        state = {"returncode": None}

        def poll():
            return state["returncode"]

        def terminate():
            state["returncode"] = -15
            process.returncode = -15

        def kill():
            state["returncode"] = -9
            process.returncode = -9

        def wait(timeout=None):
            return state["returncode"]

        process.poll.side_effect = poll
        process.terminate.side_effect = terminate
        process.kill.side_effect = kill
        process.wait.side_effect = wait
        process.returncode = None
        return process

    return make


@pytest.fixture
def signals():
    return queue.Queue()


@pytest.fixture
def fake_policy():
    """RestartPolicy stand-in that records requests and is never busy."""
    policy = Mock()
    policy.busy = False
    policy.requests = []

    def request(kind, reason, exclude=None):
        policy.requests.append((kind, reason, exclude))
        return True

    policy.request.side_effect = request
    return policy


@pytest.fixture(autouse=False)
def thread_leak_guard():
    """
    Optional fixture to detect thread leaks between tests.

    Request it explicitly in tests that start long-lived threads.
    """
    before = set(t.ident for t in threading.enumerate())
    yield
    after = set(t.ident for t in threading.enumerate())
    leaked = [t for t in threading.enumerate() if t.ident in after - before and t.is_alive()]
    if leaked:
        thread_info = "\n".join(f"  - {t.name} (daemon={t.daemon})" for t in leaked)
        assert False, f"Thread leak detected; shutdown incomplete.\nLeaked threads:\n{thread_info}"
