import asyncio

from scbridge.engine.bridge import Bridge
from scbridge.engine.dispatcher import EvalDispatcher
from scbridge.engine.hub import BroadcastHub
from scbridge.engine.staging import StagingStore

from conftest import Recorder, until


class BootedSupervisor:
    booted = True

    def __init__(self):
        self.lines = []

    async def write_line(self, line):
        self.lines.append(line)


def _bridge(staging_dir):
    hub = BroadcastHub()
    sup = BootedSupervisor()
    staging = StagingStore(staging_dir, ttl=10)
    return Bridge(hub=hub, staging=staging, supervisor=sup, dispatcher=EvalDispatcher(sup, staging))


def test_staging_failure_is_reported_to_sender_only(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("")
    bridge = _bridge(blocker)

    async def scenario():
        sender, other = Recorder(), Recorder()
        channel = bridge.hub.connect(sender.send, "sender", bridge.status())
        bridge.hub.connect(other.send, "other", bridge.status())
        await bridge.handle(channel, '{"type":"eval","code":"1;"}')
        await until(lambda: len(sender.received) == 2)
        await asyncio.sleep(0.05)
        await bridge.hub.close()
        return sender, other

    sender, other = asyncio.run(scenario())
    assert sender.received[0] == {"type": "status", "connected": True}
    assert sender.text.startswith("[bridge] eval failed:")
    assert other.text == ""
    assert bridge.supervisor.lines == []


def test_stop_and_eval_reach_the_engine(tmp_path):
    bridge = _bridge(tmp_path)

    async def scenario():
        rec = Recorder()
        channel = bridge.hub.connect(rec.send, "c", bridge.status())
        await bridge.handle(channel, '{"type":"eval","code":"{ SinOsc.ar }.play;"}')
        await bridge.handle(channel, '{"type":"stop"}')
        await bridge.handle(channel, '{"type":"nope"}')
        await bridge.hub.close()
        return rec

    asyncio.run(scenario())
    assert len(bridge.supervisor.lines) == 2
    assert bridge.supervisor.lines[0].startswith('load("')
    assert bridge.supervisor.lines[1] == "CmdPeriod.run;"
