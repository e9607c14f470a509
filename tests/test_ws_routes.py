import time

import pytest
from fastapi.testclient import TestClient

from scbridge.engine import build_bridge
from scbridge.main import create_app

from conftest import STARTUP, fake_command


def _client(tmp_path, *args):
    bridge = build_bridge(
        command=fake_command(*args),
        startup_script=STARTUP,
        staging_dir=str(tmp_path),
        restart_delay=0.2,
    )
    return TestClient(create_app(bridge))


def _wait_for_state(client, state, timeout=10.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if client.get("/health").json()["state"] == state:
            return
        time.sleep(0.05)
    pytest.fail(f"engine never reached {state}")


NOT_READY = {"type": "post", "text": "[bridge] sclang not ready\n"}


def _next_notice(ws):
    # engine posts may arrive in between
    for _ in range(50):
        msg = ws.receive_json()
        if msg == NOT_READY:
            return msg
    pytest.fail("no not-ready notice")


def test_eval_before_boot_is_refused_privately(tmp_path):
    with _client(tmp_path, "--no-boot") as client:
        with client.websocket_connect("/ws") as ws:
            assert ws.receive_json() == {"type": "status", "connected": False}
            ws.send_text('{"type":"eval","code":"1 + 1;"}')
            assert _next_notice(ws) == NOT_READY

            # garbage and an early stop are dropped, the socket stays usable
            ws.send_text("{{{ not json")
            ws.send_text('{"type":"stop"}')
            ws.send_text('{"type":"eval","code":"2;"}')
            assert _next_notice(ws) == NOT_READY
    assert list(tmp_path.glob("sc_eval_*")) == []


def test_connect_after_boot_then_eval(tmp_path):
    with _client(tmp_path) as client:
        _wait_for_state(client, "booted")
        health = client.get("/health").json()
        assert health["ok"] is True
        assert health["boots"] == 1

        with client.websocket_connect("/ws") as ws:
            assert ws.receive_json() == {"type": "status", "connected": True}
            ws.send_text('{"type":"eval","code":"1 + 1;"}')
            text = ""
            for _ in range(50):
                msg = ws.receive_json()
                assert msg["type"] == "post"
                text += msg["text"]
                if "-> ( 1 + 1; )" in text:
                    break
            assert "-> ( 1 + 1; )" in text
            assert "sc_eval_" not in text


def test_root_path_also_serves_the_bridge(tmp_path):
    with _client(tmp_path, "--no-boot") as client:
        with client.websocket_connect("/") as ws:
            assert ws.receive_json()["type"] == "status"
            assert client.get("/health").json()["clients"] == 1
