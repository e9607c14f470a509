from __future__ import annotations

import asyncio
import contextlib
import enum
import json
import logging
import os
import shlex
import signal
import time
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Set

from .errors import EngineWriteError, SpawnFailure
from .hub import BroadcastHub
from .messages import PostMessage, StatusMessage
from .sanitizer import LineAssembler, OutputSanitizer

logger = logging.getLogger(__name__)
# engine transcript, echoed line by line
transcript = logging.getLogger("scbridge.sclang")

COMPILE_MARKER = "compile done"
BOOT_MARKER = "=== SuperCollider server booted ==="

DEFAULT_COMMAND = ["stdbuf", "-oL", "sclang"]
DEFAULT_RESTART_DELAY = 3.0
READ_CHUNK = 4096
# a partial line is never held longer than this, even while output keeps coming
FLUSH_AFTER = 0.05
# nor does it grow past this many characters
PENDING_LIMIT = 4096
# after exit, pumps get this long to drain pipes a grandchild may still hold
EXIT_DRAIN = 0.5
STOP_TIMEOUT = 5.0


class EngineState(str, enum.Enum):
    SPAWNING = "spawning"
    COMPILING = "compiling"
    BOOTED = "booted"
    CRASHED = "crashed"


def load_directive(path: str | os.PathLike) -> str:
    return f"load({json.dumps(os.fspath(path))});\n"


def describe_exit(returncode: Optional[int]) -> tuple[Optional[int], Optional[str]]:
    """asyncio reports death-by-signal as a negative return code."""
    if returncode is None or returncode >= 0:
        return returncode, None
    try:
        return None, signal.Signals(-returncode).name
    except ValueError:
        return None, str(-returncode)


class MarkerScanner:
    """
    Find fixed markers in a stream that arrives in arbitrary chunks.

    Keeps the last ``len(longest marker) - 1`` characters between calls, so a
    marker split across two chunks is still seen, and a marker that was
    already reported can never be reported again from the residual alone.
    """

    def __init__(self, markers: Iterable[str]):
        self.markers = tuple(markers)
        self._keep = max((len(m) for m in self.markers), default=1) - 1
        self._tail = ""

    def feed(self, text: str) -> Set[str]:
        window = self._tail + text
        found = {m for m in self.markers if m in window}
        self._tail = window[-self._keep:] if self._keep else ""
        return found

    def reset(self) -> None:
        self._tail = ""


class _EngineProtocol(asyncio.subprocess.SubprocessStreamProtocol):
    """Stream protocol whose ``exited`` future resolves when the child itself exits."""

    def __init__(self, loop: asyncio.AbstractEventLoop, limit: int = 2 ** 16):
        super().__init__(limit=limit, loop=loop)
        self.exited: asyncio.Future = loop.create_future()

    def process_exited(self) -> None:
        super().process_exited()
        if not self.exited.done():
            self.exited.set_result(None)


class EngineSupervisor:
    """
    Own the sclang child process and its lifecycle.

    One driver task loops forever: spawn, read output until exit, report the
    crash, wait ``restart_delay`` seconds, spawn again. There is no backoff
    growth and no retry ceiling; an environment that can never start sclang
    shows up as a permanent "disconnected" status, not as a bridge crash.
    """

    def __init__(
        self,
        hub: BroadcastHub,
        *,
        command: Sequence[str] | str = DEFAULT_COMMAND,
        startup_script: str,
        cwd: Optional[str] = None,
        env: Optional[Mapping[str, str]] = None,
        sanitizer: Optional[OutputSanitizer] = None,
        restart_delay: float = DEFAULT_RESTART_DELAY,
        compile_marker: str = COMPILE_MARKER,
        boot_marker: str = BOOT_MARKER,
        flush_after: float = FLUSH_AFTER,
        on_exit: Optional[Callable[[Optional[int], Optional[str]], None]] = None,
    ):
        self.hub = hub
        self.command: List[str] = shlex.split(command) if isinstance(command, str) else list(command)
        self.startup_script = startup_script
        self.cwd = cwd
        self.env = dict(env) if env is not None else None
        self.sanitizer = sanitizer or OutputSanitizer(startup_script)
        self.restart_delay = restart_delay
        self.compile_marker = compile_marker
        self.boot_marker = boot_marker
        self.flush_after = flush_after
        self.on_exit = on_exit

        self.state = EngineState.SPAWNING
        self.proc: Optional[asyncio.subprocess.Process] = None
        self._transport: Optional[asyncio.SubprocessTransport] = None
        self._exited: Optional[asyncio.Future] = None
        self.spawned_at: Optional[float] = None
        self.boot_count = 0
        self.spawn_count = 0

        self._write_lock = asyncio.Lock()
        self._driver: Optional[asyncio.Task] = None
        self._stopping = False

    # ---------- public surface ----------
    @property
    def booted(self) -> bool:
        return self.state is EngineState.BOOTED

    @property
    def pid(self) -> Optional[int]:
        return self.proc.pid if self.proc is not None else None

    @property
    def running(self) -> bool:
        return self._driver is not None and not self._driver.done()

    def start(self) -> None:
        if self.running:
            return
        self._stopping = False
        self._driver = asyncio.create_task(self._drive(), name="sclang-supervisor")

    async def stop(self) -> None:
        self._stopping = True
        driver, self._driver = self._driver, None
        if driver is not None:
            driver.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await driver
        await self._terminate()
        was_booted = self.booted
        self.state = EngineState.CRASHED
        if was_booted:
            self.hub.broadcast(StatusMessage(connected=False))

    async def write_line(self, line: str) -> None:
        """Write one directive to sclang's stdin. Writers never interleave."""
        if not line.endswith("\n"):
            line += "\n"
        async with self._write_lock:
            proc = self.proc
            if proc is None or proc.stdin is None or proc.stdin.is_closing():
                raise EngineWriteError("sclang stdin is not available")
            try:
                proc.stdin.write(line.encode("utf-8"))
                await proc.stdin.drain()
            except (BrokenPipeError, ConnectionResetError) as e:
                raise EngineWriteError(f"write to sclang failed: {e}") from e

    # ---------- lifecycle ----------
    async def _drive(self) -> None:
        while not self._stopping:
            try:
                returncode = await self._run_once()
            except SpawnFailure as e:
                logger.error("%s", e)
                self._crashed(f"\n[bridge] {e}; retrying in {self.restart_delay:g} s…\n")
            else:
                code, sig = describe_exit(returncode)
                logger.warning("sclang exited: code=%s signal=%s", code, sig)
                self._crashed(
                    f"\n[sclang exited: code={code} signal={sig}] "
                    f"restarting in {self.restart_delay:g} s…\n"
                )
                if self.on_exit is not None:
                    self.on_exit(code, sig)
            await asyncio.sleep(self.restart_delay)

    def _crashed(self, notice: str) -> None:
        self.state = EngineState.CRASHED
        self.proc = None
        self.hub.broadcast(PostMessage(text=notice))
        self.hub.broadcast(StatusMessage(connected=False))

    def _spawn_env(self) -> Dict[str, str]:
        env = dict(os.environ if self.env is None else self.env)
        env.setdefault("PULSE_RUNTIME_PATH", "/tmp/pulse-runtime")
        # sclang links Qt even in REPL mode
        env.setdefault("QT_QPA_PLATFORM", "offscreen")
        return env

    async def _spawn(self) -> asyncio.subprocess.Process:
        self.state = EngineState.SPAWNING
        logger.info("spawning sclang: %s", " ".join(shlex.quote(c) for c in self.command))
        loop = asyncio.get_running_loop()
        try:
            transport, protocol = await loop.subprocess_exec(
                lambda: _EngineProtocol(loop),
                *self.command,
                cwd=self.cwd,
                env=self._spawn_env(),
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except (OSError, ValueError) as e:
            raise SpawnFailure(f"failed to start sclang: {e}") from e
        proc = asyncio.subprocess.Process(transport, protocol, loop)
        self.proc = proc
        self._transport = transport
        self._exited = protocol.exited
        self.spawned_at = time.time()
        self.spawn_count += 1
        return proc

    async def _run_once(self) -> Optional[int]:
        proc = await self._spawn()
        transport, exited = self._transport, self._exited
        pumps = [
            asyncio.create_task(self._pump(proc, proc.stdout, "stdout")),
            asyncio.create_task(self._pump(proc, proc.stderr, "stderr")),
        ]
        try:
            # not proc.wait(): that also waits for every copy of the pipes to close
            await exited
            _, pending = await asyncio.wait(pumps, timeout=EXIT_DRAIN)
            for task in pending:
                task.cancel()
            return proc.returncode
        finally:
            for task in pumps:
                task.cancel()
            if exited.done():
                # a grandchild may still hold the pipes; let go of our ends
                transport.close()

    async def _terminate(self) -> None:
        proc, self.proc = self.proc, None
        transport, exited = self._transport, self._exited
        if proc is None or transport is None or exited is None:
            return
        if not exited.done():
            try:
                proc.terminate()
            except ProcessLookupError:
                pass
            try:
                await asyncio.wait_for(asyncio.shield(exited), timeout=STOP_TIMEOUT)
            except asyncio.TimeoutError:
                with contextlib.suppress(ProcessLookupError):
                    proc.kill()
                await exited
        transport.close()

    # ---------- output ----------
    async def _pump(self, proc: asyncio.subprocess.Process, reader: asyncio.StreamReader, name: str) -> None:
        lines = LineAssembler()
        scanner = MarkerScanner((self.compile_marker, self.boot_marker))
        while True:
            if lines.pending:
                wait = lines.age() - self.flush_after
                if wait >= 0 or len(lines.pending) >= PENDING_LIMIT:
                    self._publish(lines.flush())
                    continue
                try:
                    chunk = await asyncio.wait_for(reader.read(READ_CHUNK), timeout=-wait)
                except asyncio.TimeoutError:
                    self._publish(lines.flush())
                    continue
            else:
                chunk = await reader.read(READ_CHUNK)
            if not chunk:
                self._publish(lines.close())
                return
            text = lines.decode(chunk)
            found = scanner.feed(text)
            if found:
                await self._advance(proc, found)
            self._publish(lines.feed(text))

    async def _advance(self, proc: asyncio.subprocess.Process, found: Set[str]) -> None:
        if proc is not self.proc:
            return
        if self.state is EngineState.SPAWNING and self.compile_marker in found:
            self.state = EngineState.COMPILING
            logger.info("class library compiled; sending startup script %s", self.startup_script)
            try:
                await self.write_line(load_directive(self.startup_script))
            except EngineWriteError as e:
                logger.error("could not send startup script: %s", e)
        if self.state is EngineState.COMPILING and self.boot_marker in found:
            self.state = EngineState.BOOTED
            self.boot_count += 1
            logger.info("server booted; accepting evals")
            self.hub.broadcast(StatusMessage(connected=True))

    def _publish(self, text: str) -> None:
        if not text:
            return
        clean = self.sanitizer.clean(text)
        if not clean:
            return
        for line in clean.splitlines():
            transcript.info("%s", line)
        self.hub.broadcast(PostMessage(text=clean))
