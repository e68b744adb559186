from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import enum
import json
import logging
import platform
from dataclasses import dataclass
from typing import Any, Optional

import websockets
from websockets.exceptions import ConnectionClosed

from .constants import (
    DISCORD_GATEWAY_QUERY,
    DISCORD_GATEWAY_URL,
    OP_DISPATCH,
    OP_HEARTBEAT,
    OP_HEARTBEAT_ACK,
    OP_HELLO,
    OP_IDENTIFY,
    OP_INVALID_SESSION,
    OP_RECONNECT,
    OP_RESUME,
)
from .errors import GatewayError
from .events import EventRegistry
from .logging_utils import log_event

READY_EVENT = "READY"
RESUMED_EVENT = "RESUMED"
INVALID_SESSION_DELAY_SECONDS = 5.0
RECONNECT_BASE_SECONDS = 1.0
RECONNECT_MAX_SECONDS = 60.0
# Closing with 1000/1001 invalidates the session server-side.
RESUMABLE_CLOSE_CODE = 4000
NON_RESUMABLE_CLOSE_CODES = {4007, 4009}
# Authentication/intent failures; still retried, but logged loudly.
FATAL_GATEWAY_CLOSE_CODES = {4004, 4010, 4011, 4012, 4013, 4014}


class SessionState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AWAITING_HELLO = "awaiting_hello"
    IDENTIFYING = "identifying"
    RESUMING = "resuming"
    CONNECTED = "connected"


@dataclass(frozen=True)
class SessionDescriptor:
    session_id: Optional[str] = None
    resume_url: Optional[str] = None
    sequence: Optional[int] = None
    heartbeat_interval: Optional[float] = None
    reconnect_attempts: int = 0

    @property
    def resumable(self) -> bool:
        return self.session_id is not None


@dataclass(frozen=True)
class GatewayFrame:
    op: int
    d: Any = None
    s: Optional[int] = None
    t: Optional[str] = None
    raw: dict[str, Any] | None = None


def build_identify_payload(
    *,
    bot_token: str,
    intents: int,
    shard_id: int = 0,
    shard_count: int = 1,
) -> dict[str, Any]:
    return {
        "op": OP_IDENTIFY,
        "d": {
            "token": bot_token,
            "intents": intents,
            "properties": {
                "os": platform.system().lower() or "unknown",
                "browser": "unicord",
                "device": "unicord",
            },
            "shard": [shard_id, shard_count],
        },
    }


def build_resume_payload(
    *, bot_token: str, session_id: str, sequence: Optional[int]
) -> dict[str, Any]:
    return {
        "op": OP_RESUME,
        "d": {"token": bot_token, "session_id": session_id, "seq": sequence},
    }


def build_heartbeat_payload(sequence: Optional[int]) -> dict[str, Any]:
    return {"op": OP_HEARTBEAT, "d": sequence}


def parse_gateway_frame(frame: str | bytes | dict[str, Any]) -> GatewayFrame:
    if isinstance(frame, bytes):
        try:
            frame = frame.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise GatewayError("gateway frame is not valid UTF-8") from exc
    if isinstance(frame, str):
        try:
            payload = json.loads(frame)
        except ValueError as exc:
            raise GatewayError(f"gateway frame is not valid JSON: {exc}") from exc
    else:
        payload = dict(frame)
    if not isinstance(payload, dict):
        raise GatewayError("gateway frame must be a JSON object")
    op = payload.get("op")
    if not isinstance(op, int) or isinstance(op, bool):
        raise GatewayError(f"gateway frame missing numeric op: {payload!r}")
    seq = payload.get("s")
    event_type = payload.get("t")
    return GatewayFrame(
        op=op,
        d=payload.get("d"),
        s=seq if isinstance(seq, int) and not isinstance(seq, bool) else None,
        t=event_type if isinstance(event_type, str) else None,
        raw=payload,
    )


def calculate_reconnect_backoff(
    attempt: int,
    *,
    base_seconds: float = RECONNECT_BASE_SECONDS,
    max_seconds: float = RECONNECT_MAX_SECONDS,
) -> float:
    normalized_attempt = max(attempt, 0)
    if max_seconds <= 0.0 or base_seconds <= 0.0:
        return 0.0
    # Past this point 2**attempt only grows; avoid huge ints.
    if normalized_attempt >= 32:
        return max_seconds
    return float(min(base_seconds * (2**normalized_attempt), max_seconds))


def normalize_gateway_url(url: str) -> str:
    if "?" in url:
        return url
    return f"{url}?{DISCORD_GATEWAY_QUERY}"


def gateway_close_code(exc: BaseException) -> int | None:
    received = getattr(exc, "rcvd", None)
    received_code = getattr(received, "code", None)
    if isinstance(received_code, int):
        return received_code
    code = getattr(exc, "code", None)
    if isinstance(code, int):
        return code
    return None


class GatewaySession:
    """One gateway connection and its identify/resume/heartbeat lifecycle.

    ``run()`` loops until ``stop()``: every connection failure, close or
    malformed frame leads to a reconnect after ``calculate_reconnect_backoff``.
    Decoded dispatch events are re-emitted on ``events`` under their event
    name with the frame's ``d`` payload.
    """

    def __init__(
        self,
        *,
        bot_token: str,
        intents: int,
        shard_id: int = 0,
        shard_count: int = 1,
        gateway_url: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._bot_token = bot_token
        self._intents = intents
        self._shard_id = shard_id
        self._shard_count = shard_count
        self._gateway_url = gateway_url
        self._logger = logger or logging.getLogger(__name__)
        self.events = EventRegistry(logger=self._logger)
        self._state = SessionState.DISCONNECTED
        self._descriptor = SessionDescriptor()
        self._last_heartbeat_ack: Optional[float] = None
        self._stop_event = asyncio.Event()
        self._heartbeat_task: Optional[asyncio.Task[None]] = None
        self._run_task: Optional[asyncio.Task[None]] = None
        self._websocket: Any = None

    @property
    def shard_id(self) -> int:
        return self._shard_id

    @property
    def shard_count(self) -> int:
        return self._shard_count

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def descriptor(self) -> SessionDescriptor:
        return self._descriptor

    @property
    def heartbeat_active(self) -> bool:
        return self._heartbeat_task is not None and not self._heartbeat_task.done()

    @property
    def last_heartbeat_ack(self) -> Optional[float]:
        return self._last_heartbeat_ack

    def connect(self) -> asyncio.Task[None]:
        """Start ``run()`` in the background; idempotent while running."""
        if self._run_task is None or self._run_task.done():
            self._stop_event.clear()
            self._run_task = asyncio.create_task(
                self.run(), name=f"unicord-gateway-shard-{self._shard_id}"
            )
        return self._run_task

    async def wait(self) -> None:
        if self._run_task is not None:
            await self._run_task

    async def stop(self) -> None:
        self._stop_event.set()
        await self._cancel_heartbeat()
        if self._websocket is not None:
            with contextlib.suppress(Exception):
                await self._websocket.close()
        if self._run_task is not None and self._run_task is not asyncio.current_task():
            with contextlib.suppress(asyncio.CancelledError):
                await self._run_task

    async def run(self) -> None:
        while not self._stop_event.is_set():
            resumable = True
            gateway_url = self._connect_url()
            self._set_state(SessionState.CONNECTING)
            try:
                async with websockets.connect(gateway_url, max_size=None) as websocket:
                    self._websocket = websocket
                    self._set_state(SessionState.AWAITING_HELLO)
                    resumable = await self._run_connection(websocket)
            except asyncio.CancelledError:
                raise
            except ConnectionClosed as exc:
                close_code = gateway_close_code(exc)
                if close_code in NON_RESUMABLE_CLOSE_CODES:
                    resumable = False
                level = (
                    logging.ERROR
                    if close_code in FATAL_GATEWAY_CLOSE_CODES
                    else logging.INFO
                )
                log_event(
                    self._logger,
                    level,
                    "unicord.gateway.closed",
                    shard_id=self._shard_id,
                    close_code=close_code,
                )
            except GatewayError as exc:
                log_event(
                    self._logger,
                    logging.WARNING,
                    "unicord.gateway.malformed_frame",
                    shard_id=self._shard_id,
                    exc=exc,
                )
            except Exception as exc:
                log_event(
                    self._logger,
                    logging.WARNING,
                    "unicord.gateway.transport_error",
                    shard_id=self._shard_id,
                    exc=exc,
                )
            finally:
                self._websocket = None
                await self._cancel_heartbeat()
                self._set_state(SessionState.DISCONNECTED)

            if self._stop_event.is_set():
                break
            if not resumable:
                self._replace(session_id=None, resume_url=None, sequence=None)
            attempts = self._descriptor.reconnect_attempts
            backoff = calculate_reconnect_backoff(attempts)
            self._replace(reconnect_attempts=attempts + 1)
            log_event(
                self._logger,
                logging.INFO,
                "unicord.gateway.reconnect_scheduled",
                shard_id=self._shard_id,
                attempt=attempts,
                delay_seconds=backoff,
                resumable=self._descriptor.resumable,
            )
            await self._sleep_unless_stopped(backoff)

    def _connect_url(self) -> str:
        descriptor = self._descriptor
        if descriptor.resumable and descriptor.resume_url:
            return normalize_gateway_url(descriptor.resume_url)
        if self._gateway_url:
            return normalize_gateway_url(self._gateway_url)
        return DISCORD_GATEWAY_URL

    async def _run_connection(self, websocket: Any) -> bool:
        """Consume frames until the socket ends; returns whether to resume."""
        async for raw_message in websocket:
            frame = parse_gateway_frame(raw_message)
            if await self._handle_frame(websocket, frame):
                with contextlib.suppress(Exception):
                    await websocket.close(code=RESUMABLE_CLOSE_CODE, reason="reconnect")
                return True
        return True

    async def _handle_frame(self, websocket: Any, frame: GatewayFrame) -> bool:
        """Apply one frame; returns True when the gateway asked to reconnect."""
        if frame.s is not None:
            current = self._descriptor.sequence
            if current is None or frame.s > current:
                self._replace(sequence=frame.s)

        if frame.op == OP_DISPATCH:
            if frame.t == READY_EVENT and isinstance(frame.d, dict):
                session_id = frame.d.get("session_id")
                resume_url = frame.d.get("resume_gateway_url")
                self._replace(
                    session_id=session_id if isinstance(session_id, str) else None,
                    resume_url=resume_url if isinstance(resume_url, str) else None,
                    reconnect_attempts=0,
                )
                log_event(
                    self._logger,
                    logging.INFO,
                    "unicord.gateway.ready",
                    shard_id=self._shard_id,
                    session_id=self._descriptor.session_id,
                )
            elif frame.t == RESUMED_EVENT:
                self._replace(reconnect_attempts=0)
                log_event(
                    self._logger,
                    logging.INFO,
                    "unicord.gateway.resumed",
                    shard_id=self._shard_id,
                    session_id=self._descriptor.session_id,
                )
            if frame.t:
                await self.events.emit(frame.t, frame.d)
            return False
        if frame.op == OP_HEARTBEAT:
            await self._send_heartbeat(websocket)
            return False
        if frame.op == OP_RECONNECT:
            log_event(
                self._logger,
                logging.INFO,
                "unicord.gateway.reconnect_requested",
                shard_id=self._shard_id,
            )
            return True
        if frame.op == OP_INVALID_SESSION:
            log_event(
                self._logger,
                logging.WARNING,
                "unicord.gateway.invalid_session",
                shard_id=self._shard_id,
            )
            self._replace(session_id=None, resume_url=None, sequence=None)
            await self._sleep_unless_stopped(INVALID_SESSION_DELAY_SECONDS)
            if not self._stop_event.is_set():
                await self._identify(websocket)
            return False
        if frame.op == OP_HELLO:
            await self._handle_hello(websocket, frame)
            return False
        if frame.op == OP_HEARTBEAT_ACK:
            self._last_heartbeat_ack = asyncio.get_running_loop().time()
            return False
        log_event(
            self._logger,
            logging.DEBUG,
            "unicord.gateway.unknown_opcode",
            shard_id=self._shard_id,
            op=frame.op,
        )
        return False

    async def _handle_hello(self, websocket: Any, frame: GatewayFrame) -> None:
        hello_data = frame.d if isinstance(frame.d, dict) else {}
        heartbeat_ms = hello_data.get("heartbeat_interval")
        if (
            not isinstance(heartbeat_ms, (int, float))
            or isinstance(heartbeat_ms, bool)
            or heartbeat_ms <= 0
        ):
            raise GatewayError("gateway HELLO missing heartbeat_interval")
        interval_seconds = float(heartbeat_ms) / 1000.0
        self._replace(heartbeat_interval=interval_seconds)
        await self._start_heartbeat(websocket, interval_seconds)

        if self._descriptor.resumable:
            await self._resume(websocket)
        else:
            await self._identify(websocket)
        self._set_state(SessionState.CONNECTED)

    async def _identify(self, websocket: Any) -> None:
        self._set_state(SessionState.IDENTIFYING)
        await self._send(
            websocket,
            build_identify_payload(
                bot_token=self._bot_token,
                intents=self._intents,
                shard_id=self._shard_id,
                shard_count=self._shard_count,
            ),
        )

    async def _resume(self, websocket: Any) -> None:
        descriptor = self._descriptor
        if descriptor.session_id is None:
            await self._identify(websocket)
            return
        self._set_state(SessionState.RESUMING)
        await self._send(
            websocket,
            build_resume_payload(
                bot_token=self._bot_token,
                session_id=descriptor.session_id,
                sequence=descriptor.sequence,
            ),
        )

    async def _send(self, websocket: Any, payload: dict[str, Any]) -> None:
        await websocket.send(json.dumps(payload))

    async def _send_heartbeat(self, websocket: Any) -> None:
        await self._send(websocket, build_heartbeat_payload(self._descriptor.sequence))

    async def _start_heartbeat(self, websocket: Any, interval_seconds: float) -> None:
        await self._cancel_heartbeat()
        self._heartbeat_task = asyncio.create_task(
            self._heartbeat_loop(websocket, interval_seconds)
        )

    async def _heartbeat_loop(self, websocket: Any, interval_seconds: float) -> None:
        while not self._stop_event.is_set():
            await asyncio.sleep(interval_seconds)
            await self._send_heartbeat(websocket)

    async def _cancel_heartbeat(self) -> None:
        if self._heartbeat_task is None:
            return
        task = self._heartbeat_task
        self._heartbeat_task = None
        if not task.done():
            task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as exc:
            # Heartbeats fail once the socket is gone; the reconnect path owns recovery.
            log_event(
                self._logger,
                logging.DEBUG,
                "unicord.gateway.heartbeat_ended",
                shard_id=self._shard_id,
                exc=exc,
            )

    async def _sleep_unless_stopped(self, seconds: float) -> None:
        if seconds <= 0:
            await asyncio.sleep(0)
            return
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)

    def _replace(self, **changes: Any) -> None:
        self._descriptor = dataclasses.replace(self._descriptor, **changes)

    def _set_state(self, state: SessionState) -> None:
        if state is self._state:
            return
        previous = self._state
        self._state = state
        log_event(
            self._logger,
            logging.DEBUG,
            "unicord.gateway.state",
            shard_id=self._shard_id,
            previous=previous.value,
            state=state.value,
        )
