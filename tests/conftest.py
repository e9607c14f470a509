import asyncio
import sys
import time
from pathlib import Path

import pytest

FAKE_SCLANG = str(Path(__file__).resolve().parent / "fake_sclang.py")
STARTUP = "/opt/sc/startup.scd"


def fake_command(*args):
    return [sys.executable, "-u", FAKE_SCLANG, *args]


async def until(predicate, timeout=10.0, interval=0.01):
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(interval)


class Recorder:
    """A hub client that just remembers what it was sent."""

    def __init__(self):
        self.received = []

    async def send(self, payload):
        self.received.append(payload)

    @property
    def statuses(self):
        return [m["connected"] for m in self.received if m["type"] == "status"]

    @property
    def text(self):
        return "".join(m["text"] for m in self.received if m["type"] == "post")


@pytest.fixture
def recorder():
    return Recorder()
