"""Tests for the per-connection session orchestrator."""

from __future__ import annotations

import asyncio
import json

import pytest

from termbridge.domain.models import PtySize, SessionState
from termbridge.protocol.codec import ProtocolVariant
from termbridge.pty.base import PtyIOError, PtyStrategy, SpawnError
from termbridge.session.orchestrator import Session, default_window_title

INIT = b'{"columns":100,"rows":40}'


def make_session(peer, spawner, **kwargs) -> Session:
    kwargs.setdefault("command", ["bash"])
    return Session(peer, spawn=spawner, **kwargs)


async def run_to_end(session: Session, timeout: float = 2.0) -> None:
    await asyncio.wait_for(session.run(), timeout)


class TestStartup:
    @pytest.mark.asyncio
    async def test_sends_title_then_preferences(self, peer, spawner) -> None:
        session = make_session(peer, spawner, title="my terminal")
        peer.disconnect()
        await run_to_end(session)
        assert peer.sent[:2] == [b"1my terminal", b"2{}"]

    @pytest.mark.asyncio
    async def test_default_title_names_command(self, peer, spawner) -> None:
        session = make_session(peer, spawner, command=["htop", "-d", "5"])
        peer.disconnect()
        await run_to_end(session)
        title = peer.sent[0][1:].decode()
        assert title == default_window_title(["htop", "-d", "5"])
        assert title.startswith("htop -d 5 (")

    @pytest.mark.asyncio
    async def test_custom_preferences(self, peer, spawner) -> None:
        prefs = json.dumps({"fontSize": 14})
        session = make_session(peer, spawner, preferences=prefs)
        peer.disconnect()
        await run_to_end(session)
        assert peer.sent[1] == b"2" + prefs.encode()

    @pytest.mark.asyncio
    async def test_send_failure_closes_session(self, peer, spawner) -> None:
        peer.fail_send = True
        session = make_session(peer, spawner)
        await run_to_end(session)
        assert session.state is SessionState.CLOSED
        assert peer.closed
        assert spawner.calls == []


class TestInit:
    @pytest.mark.asyncio
    async def test_spawns_with_requested_size(self, peer, spawner) -> None:
        session = make_session(peer, spawner, cwd="/tmp", strategy=PtyStrategy.PIPE,
                               input_queue_size=16)
        peer.feed(INIT)
        peer.disconnect()
        await run_to_end(session)

        assert len(spawner.calls) == 1
        command, size, kwargs = spawner.calls[0]
        assert command == ["bash"]
        assert size == PtySize(cols=100, rows=40)
        assert kwargs == {"cwd": "/tmp", "strategy": PtyStrategy.PIPE, "input_queue_size": 16}

    @pytest.mark.asyncio
    async def test_zero_size_defaults_to_80x24(self, peer, spawner) -> None:
        session = make_session(peer, spawner)
        peer.feed(b'{"columns":0,"rows":0}')
        peer.disconnect()
        await run_to_end(session)
        assert spawner.calls[0][1] == PtySize(cols=80, rows=24)

    @pytest.mark.asyncio
    async def test_zero_dimension_defaults_independently(self, peer, spawner) -> None:
        session = make_session(peer, spawner)
        peer.feed(b'{"columns":132,"rows":0}')
        peer.disconnect()
        await run_to_end(session)
        assert spawner.calls[0][1] == PtySize(cols=132, rows=24)

    @pytest.mark.asyncio
    async def test_repeated_init_ignored(self, peer, spawner) -> None:
        session = make_session(peer, spawner)
        peer.feed(INIT, b'{"columns":10,"rows":10}')
        peer.disconnect()
        await run_to_end(session)
        assert len(spawner.calls) == 1

    @pytest.mark.asyncio
    async def test_frames_before_init_ignored(self, peer, spawner) -> None:
        session = make_session(peer, spawner, writable=True)
        peer.feed(b"0early", b'1{"columns":90,"rows":30}', INIT, b"0late")
        peer.disconnect()
        await run_to_end(session)
        assert spawner.process.written == [b"late"]
        assert spawner.process.resizes == []

    @pytest.mark.asyncio
    async def test_spawn_failure_closes_session(self, peer, spawner) -> None:
        spawner.error = SpawnError("no such file", ["nope"])
        session = make_session(peer, spawner, command=["nope"])
        peer.feed(INIT)
        await run_to_end(session)
        assert session.state is SessionState.CLOSED
        assert peer.closed
        assert session.process is None


class TestAuthentication:
    @pytest.mark.asyncio
    async def test_correct_token_spawns(self, peer, spawner) -> None:
        session = make_session(peer, spawner, credential="s3cret")
        peer.feed(b'{"columns":80,"rows":24,"AuthToken":"s3cret"}')
        peer.disconnect()
        await run_to_end(session)
        assert len(spawner.calls) == 1
        assert session.authenticated

    @pytest.mark.asyncio
    async def test_wrong_token_closes_without_spawning(self, peer, spawner) -> None:
        session = make_session(peer, spawner, credential="s3cret")
        peer.feed(b'{"columns":80,"rows":24,"AuthToken":"guess"}')
        await run_to_end(session)
        assert spawner.calls == []
        assert peer.closed
        assert not session.authenticated
        assert session.state is SessionState.CLOSED

    @pytest.mark.asyncio
    async def test_missing_token_closes_without_spawning(self, peer, spawner) -> None:
        session = make_session(peer, spawner, credential="s3cret")
        peer.feed(INIT)
        await run_to_end(session)
        assert spawner.calls == []
        assert peer.closed

    @pytest.mark.asyncio
    async def test_token_ignored_without_credential(self, peer, spawner) -> None:
        session = make_session(peer, spawner)
        peer.feed(b'{"columns":80,"rows":24,"AuthToken":"anything"}')
        peer.disconnect()
        await run_to_end(session)
        assert len(spawner.calls) == 1


class TestInput:
    @pytest.mark.asyncio
    async def test_input_forwarded_in_order(self, peer, spawner) -> None:
        session = make_session(peer, spawner, writable=True)
        peer.feed(INIT, b"0ls", b"0 -la", b"0\r")
        peer.disconnect()
        await run_to_end(session)
        assert spawner.process.written == [b"ls", b" -la", b"\r"]

    @pytest.mark.asyncio
    async def test_read_only_ignores_input(self, peer, spawner) -> None:
        session = make_session(peer, spawner)
        peer.feed(INIT, b"0rm -rf /\r")
        peer.disconnect()
        await run_to_end(session)
        assert spawner.process.written == []

    @pytest.mark.asyncio
    async def test_full_input_queue_keeps_session(self, peer, spawner, wait_until) -> None:
        session = make_session(peer, spawner, writable=True)
        task = asyncio.create_task(session.run())
        peer.feed(INIT)
        await wait_until(lambda: session.process is not None)

        spawner.process.write_error = PtyIOError("Input queue full")
        peer.feed(b"0dropped")
        spawner.process.emit(b"still alive")
        await wait_until(lambda: peer.outputs == [b"still alive"])
        assert session.state is SessionState.ACTIVE

        peer.disconnect()
        await asyncio.wait_for(task, 2.0)

    @pytest.mark.asyncio
    async def test_mouse_click_written_as_report(self, peer, spawner) -> None:
        session = make_session(peer, spawner, writable=True, variant=ProtocolVariant.MOUSE)
        peer.feed(INIT, b'4{"x":5,"y":10,"button":0,"pressed":true}')
        peer.disconnect()
        await run_to_end(session)
        assert spawner.process.written == [bytes([0x1B, 0x4D, 0x20, 37, 42])]

    @pytest.mark.asyncio
    async def test_mouse_ignored_when_read_only(self, peer, spawner) -> None:
        session = make_session(peer, spawner, variant=ProtocolVariant.MOUSE)
        peer.feed(INIT, b'5{"x":1,"y":1,"button":0,"start_x":0,"start_y":0}')
        peer.disconnect()
        await run_to_end(session)
        assert spawner.process.written == []


class TestProtocolErrors:
    @pytest.mark.asyncio
    async def test_bad_frames_dropped_and_session_continues(self, peer, spawner) -> None:
        session = make_session(peer, spawner, writable=True)
        peer.feed(INIT, b"", b"9junk", b"1{broken", b"0ok")
        peer.disconnect()
        await run_to_end(session)
        assert spawner.process.written == [b"ok"]

    @pytest.mark.asyncio
    async def test_mouse_frame_rejected_in_plain_variant(self, peer, spawner) -> None:
        session = make_session(peer, spawner, writable=True)
        peer.feed(INIT, b'4{"x":5,"y":10,"button":0,"pressed":true}', b"0after")
        peer.disconnect()
        await run_to_end(session)
        assert spawner.process.written == [b"after"]


class TestResize:
    @pytest.mark.asyncio
    async def test_resizes_applied_in_order(self, peer, spawner) -> None:
        session = make_session(peer, spawner)
        peer.feed(
            INIT,
            b'1{"columns":120,"rows":50}',
            b'1{"columns":0,"rows":10}',
            b'1{"columns":90,"rows":20}',
        )
        peer.disconnect()
        await run_to_end(session)
        assert spawner.process.resizes == [
            PtySize(cols=120, rows=50),
            PtySize(cols=90, rows=20),
        ]


class TestOutputAndFlowControl:
    @pytest.mark.asyncio
    async def test_output_forwarded_in_order(self, peer, spawner, wait_until) -> None:
        session = make_session(peer, spawner)
        task = asyncio.create_task(session.run())
        peer.feed(INIT)
        await wait_until(lambda: session.process is not None)

        for chunk in (b"one", b"two", b"three"):
            spawner.process.emit(chunk)
        await wait_until(lambda: len(peer.outputs) == 3)
        assert peer.outputs == [b"one", b"two", b"three"]

        peer.disconnect()
        await asyncio.wait_for(task, 2.0)

    @pytest.mark.asyncio
    async def test_pause_holds_output_until_resume(self, peer, spawner, wait_until) -> None:
        session = make_session(peer, spawner)
        task = asyncio.create_task(session.run())
        peer.feed(INIT)
        await wait_until(lambda: session.state is SessionState.ACTIVE)

        spawner.process.emit(b"before")
        await wait_until(lambda: peer.outputs == [b"before"])

        peer.feed(b"2")
        await wait_until(lambda: session.paused)
        for chunk in (b"a", b"b", b"c"):
            spawner.process.emit(chunk)
        await asyncio.sleep(0.05)
        assert peer.outputs == [b"before"]

        peer.feed(b"3")
        await wait_until(lambda: len(peer.outputs) == 4)
        assert peer.outputs == [b"before", b"a", b"b", b"c"]
        assert session.state is SessionState.ACTIVE

        peer.disconnect()
        await asyncio.wait_for(task, 2.0)

    @pytest.mark.asyncio
    async def test_pause_and_resume_are_idempotent(self, peer, spawner, wait_until) -> None:
        session = make_session(peer, spawner)
        task = asyncio.create_task(session.run())
        peer.feed(INIT, b"3", b"2", b"2")
        await wait_until(lambda: session.paused)
        peer.feed(b"3", b"3")
        await wait_until(lambda: session.state is SessionState.ACTIVE)
        peer.disconnect()
        await asyncio.wait_for(task, 2.0)


class TestTeardown:
    @pytest.mark.asyncio
    async def test_disconnect_before_init(self, peer, spawner) -> None:
        session = make_session(peer, spawner)
        peer.disconnect()
        await run_to_end(session)
        assert session.state is SessionState.CLOSED
        assert spawner.calls == []
        assert peer.close_calls == 1

    @pytest.mark.asyncio
    async def test_disconnect_kills_process_once(self, peer, spawner) -> None:
        session = make_session(peer, spawner)
        peer.feed(INIT)
        peer.disconnect()
        await run_to_end(session)
        assert spawner.process.aclose_calls == 1
        assert peer.close_calls == 1
        assert session.state is SessionState.CLOSED

    @pytest.mark.asyncio
    async def test_process_exit_closes_session(self, peer, spawner, wait_until) -> None:
        session = make_session(peer, spawner)
        task = asyncio.create_task(session.run())
        peer.feed(INIT)
        await wait_until(lambda: session.process is not None)

        spawner.process.emit(b"bye\r\n")
        spawner.process.exit()
        await asyncio.wait_for(task, 2.0)

        assert peer.outputs == [b"bye\r\n"]
        assert session.state is SessionState.CLOSED
        assert spawner.process.aclose_calls == 1
        assert peer.closed

    @pytest.mark.asyncio
    async def test_exit_while_paused_waits_for_resume(self, peer, spawner, wait_until) -> None:
        session = make_session(peer, spawner)
        task = asyncio.create_task(session.run())
        peer.feed(INIT, b"2")
        await wait_until(lambda: session.paused)

        spawner.process.emit(b"last words")
        spawner.process.exit()
        await asyncio.sleep(0.05)
        assert not task.done()

        peer.feed(b"3")
        await asyncio.wait_for(task, 2.0)
        assert peer.outputs == [b"last words"]
        assert session.state is SessionState.CLOSED
