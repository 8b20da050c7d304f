"""Shared fakes for the capture engine tests."""

import asyncio

import pytest

from logcat_capture.privilege import PrivilegeChannel


class FakeProcess:
    """Stands in for asyncio.subprocess.Process with a fed StreamReader as stdout."""

    def __init__(self, lines=(), eof=True, ignore_terminate=False):
        self.stdout = asyncio.StreamReader()
        self.returncode = None
        self.terminated = False
        self.killed = False
        self._ignore_terminate = ignore_terminate
        self._eof = False
        self._exited = asyncio.Event()
        for line in lines:
            self.feed(line)
        if eof:
            self.close_stdout()

    def feed(self, line: str):
        self.stdout.feed_data((line + "\n").encode("utf-8"))

    def close_stdout(self):
        if not self._eof:
            self._eof = True
            self.stdout.feed_eof()

    def terminate(self):
        self.terminated = True
        if not self._ignore_terminate:
            self._exit(-15)

    def kill(self):
        self.killed = True
        self._exit(-9)

    def _exit(self, code):
        if self.returncode is None:
            self.returncode = code
            self.close_stdout()
            self._exited.set()

    async def wait(self):
        await self._exited.wait()
        return self.returncode


class FakeSpawner:
    """Unprivileged spawn primitive that hands out a prepared process."""

    def __init__(self, process=None, error=None):
        self.process = process
        self.error = error
        self.calls: list[list[str]] = []

    async def __call__(self, argv):
        self.calls.append(list(argv))
        if self.error is not None:
            raise self.error
        return self.process


class FakeChannel(PrivilegeChannel):
    """Elevated channel with scripted probe results."""

    def __init__(self, ping=True, grant=True, process=None, pid_output="", spawn_error=None, pid_hangs=False):
        self.ping = ping
        self.grant = grant
        self.process = process
        self.pid_output = pid_output
        self.spawn_error = spawn_error
        self.pid_hangs = pid_hangs
        self.pid_processes: list[FakeProcess] = []
        self.grant_requests = 0
        self.spawned: list[list[str]] = []

    async def pingable(self):
        if isinstance(self.ping, Exception):
            raise self.ping
        return self.ping

    async def has_grant(self):
        if isinstance(self.grant, Exception):
            raise self.grant
        return self.grant

    async def request_grant(self):
        self.grant_requests += 1

    async def spawn(self, argv):
        self.spawned.append(list(argv))
        if argv[0] == "pidof":
            if self.pid_hangs:
                proc = FakeProcess(eof=False)
            else:
                lines = [self.pid_output] if self.pid_output else []
                proc = FakeProcess(lines)
                proc._exit(0 if lines else 1)
            self.pid_processes.append(proc)
            return proc
        if self.spawn_error is not None:
            raise self.spawn_error
        return self.process


async def wait_until(predicate, timeout=2.0):
    """Poll predicate until true; fails the test on timeout."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)


@pytest.fixture
def output_file(tmp_path):
    return tmp_path / "sessions" / "logcat.txt"
