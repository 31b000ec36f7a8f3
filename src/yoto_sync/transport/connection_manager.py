"""MQTT session lifecycle: connect, receive, reconnect with backoff, disconnect.

The ConnectionManager owns a single aiomqtt client per session and drives it
through an explicit state machine:

    disconnected -> connecting -> connected
    connected -> reconnecting (unexpected close)
    reconnecting -> connected (attempt succeeded)
    reconnecting -> failed (attempt budget exhausted)
    any -> disconnected (explicit disconnect)

aiomqtt's own reconnect behaviour is not used: the retry loop here owns the
backoff schedule and the attempt budget, and runs the on-connect hooks
(subscription replay) before the session is reported as connected again.
"""

from __future__ import annotations

import asyncio
import contextlib
import ssl
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum

import aiomqtt

from yoto_sync.const import (
    YOTO_MQTT_ALPN_PROTOCOLS,
    YOTO_MQTT_AUTH_NAME,
    YOTO_MQTT_CLIENT_ID_PREFIX,
    YOTO_MQTT_CONNECT_TIMEOUT,
    YOTO_MQTT_HOST,
    YOTO_MQTT_KEEPALIVE,
    YOTO_MQTT_PORT,
    YOTO_MQTT_TRANSPORT,
    YOTO_MQTT_WS_PATH,
)
from yoto_sync.correlation import correlation_context
from yoto_sync.logging_abstraction import get_logger
from yoto_sync.metrics import registry
from yoto_sync.transport.exceptions import (
    ConnectionFailedError,
    NotConnectedError,
    PublishTimeoutError,
    YotoConnectionError,
)
from yoto_sync.transport.retry_policy import ReconnectPolicy

logger = get_logger(__name__)

MessageHandler = Callable[[str, bytes], Awaitable[None]]
ConnectHook = Callable[[], Awaitable[None]]
DisconnectHook = Callable[[], None]
ErrorListener = Callable[[str | None, BaseException], None]

# SUBACK return codes at or above 0x80 mean the broker refused the topic
_SUBACK_FAILURE_THRESHOLD = 0x80


class ConnectionState(Enum):
    """Connection state enumeration."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    FAILED = "failed"


@dataclass
class Session:
    """One authenticated broker connection for the lifetime of a process run."""

    host: str
    port: int
    identity: str
    client_id: str
    username: str
    credential: str = field(repr=False)
    state: ConnectionState = ConnectionState.DISCONNECTED
    reconnect_attempt: int = 0
    backoff_delay: float = 0.0
    connected_at: float | None = None


def _payload_bytes(payload: object) -> bytes:
    if payload is None:
        return b""
    if isinstance(payload, bytes):
        return payload
    if isinstance(payload, bytearray):
        return bytes(payload)
    return str(payload).encode()


def _is_refused(code: object) -> bool:
    """Whether a SUBACK entry (int QoS or paho ReasonCode) denotes a refusal."""
    is_failure = getattr(code, "is_failure", None)
    if isinstance(is_failure, bool):
        return is_failure
    value = getattr(code, "value", code)
    try:
        return int(value) >= _SUBACK_FAILURE_THRESHOLD  # type: ignore[call-overload]
    except (TypeError, ValueError):
        return True


class ConnectionManager:
    """Owns the MQTT session and its reconnect state machine.

    **Delivery**: inbound messages are read by one receiver task and handed to
    the message handler one at a time, each inside its own correlation
    context. A handler exception is logged and does not stop delivery.

    **Hooks**: connect hooks run after every successful (re)connection, in
    registration order, before the state becomes CONNECTED. Disconnect hooks
    run when the session is destroyed (explicit disconnect or terminal
    failure).

    **Errors**: connect() raises YotoConnectionError to its caller. Failures
    after a session was established are retried by the reconnect loop; when
    the budget runs out a single ConnectionFailedError is stored on
    ``terminal_error`` and passed to the error listeners.
    """

    lp: str = "transport:"

    def __init__(
        self,
        host: str = YOTO_MQTT_HOST,
        port: int = YOTO_MQTT_PORT,
        *,
        transport: str = YOTO_MQTT_TRANSPORT,
        websocket_path: str = YOTO_MQTT_WS_PATH,
        keepalive: int = YOTO_MQTT_KEEPALIVE,
        connect_timeout: float = YOTO_MQTT_CONNECT_TIMEOUT,
        auth_name: str = YOTO_MQTT_AUTH_NAME,
        alpn_protocols: Iterable[str] = YOTO_MQTT_ALPN_PROTOCOLS,
        reconnect_policy: ReconnectPolicy | None = None,
    ) -> None:
        self.host: str = host
        self.port: int = port
        self.transport: str = transport
        self.websocket_path: str = websocket_path
        self.keepalive: int = keepalive
        self.connect_timeout: float = connect_timeout
        self.auth_name: str = auth_name
        self.alpn_protocols: tuple[str, ...] = tuple(alpn_protocols)
        self.reconnect_policy: ReconnectPolicy = reconnect_policy or ReconnectPolicy()

        self.state: ConnectionState = ConnectionState.DISCONNECTED
        self.session: Session | None = None
        self.client: aiomqtt.Client | None = None
        self.terminal_error: ConnectionFailedError | None = None

        self.receiver_task: asyncio.Task[None] | None = None
        self.reconnect_task: asyncio.Task[None] | None = None

        self._message_handler: MessageHandler | None = None
        self._connect_hooks: list[ConnectHook] = []
        self._disconnect_hooks: list[DisconnectHook] = []
        self._error_listeners: list[ErrorListener] = []

    # ----------------------------------------------------------------- wiring

    def set_message_handler(self, handler: MessageHandler) -> None:
        self._message_handler = handler

    def add_connect_hook(self, hook: ConnectHook) -> None:
        self._connect_hooks.append(hook)

    def add_disconnect_hook(self, hook: DisconnectHook) -> None:
        self._disconnect_hooks.append(hook)

    def add_error_listener(self, listener: ErrorListener) -> None:
        self._error_listeners.append(listener)

    # ------------------------------------------------------------------ state

    def _transition(self, new_state: ConnectionState) -> None:
        old_state = self.state
        self.state = new_state
        client_id = self.session.client_id if self.session else "none"
        if self.session is not None:
            self.session.state = new_state
        registry.record_connection_state(client_id, new_state.value)
        if old_state is not new_state:
            logger.debug(
                "%s state %s -> %s",
                self.lp,
                old_state.value,
                new_state.value,
                extra={"client_id": client_id},
            )

    def is_connected(self) -> bool:
        """True only once the session is established and subscriptions are replayed."""
        return self.state is ConnectionState.CONNECTED and self.client is not None

    def _require_connected(self, operation: str) -> aiomqtt.Client:
        if self.state is not ConnectionState.CONNECTED or self.client is None:
            raise NotConnectedError(operation, self.state.value)
        return self.client

    def _require_client(self, operation: str) -> aiomqtt.Client:
        """Client of a live broker connection, including while hooks replay subscriptions."""
        if self.client is None or self.state in (ConnectionState.DISCONNECTED, ConnectionState.FAILED):
            raise NotConnectedError(operation, self.state.value)
        return self.client

    # ---------------------------------------------------------------- connect

    def _new_session(self, credential: str, identity: str) -> Session:
        return Session(
            host=self.host,
            port=self.port,
            identity=identity,
            client_id=f"{YOTO_MQTT_CLIENT_ID_PREFIX}{identity}",
            username=f"{identity}?x-amz-customauthorizer-name={self.auth_name}",
            credential=credential,
        )

    def _build_client(self, session: Session) -> aiomqtt.Client:
        tls_context = ssl.create_default_context()
        # ALPN is only meaningful for raw MQTT over TLS on 443
        if self.transport == "tcp" and self.alpn_protocols:
            tls_context.set_alpn_protocols(list(self.alpn_protocols))
        return aiomqtt.Client(
            hostname=session.host,
            port=session.port,
            username=session.username,
            password=session.credential,
            identifier=session.client_id,
            keepalive=self.keepalive,
            transport=self.transport,  # type: ignore[arg-type]
            websocket_path=self.websocket_path if self.transport == "websockets" else None,
            tls_context=tls_context,
            timeout=self.connect_timeout,
        )

    async def _open(self, session: Session) -> None:
        """Run the MQTT handshake for a session; raise YotoConnectionError on failure."""
        lp = f"{self.lp}open:"
        client = self._build_client(session)
        try:
            _ = await asyncio.wait_for(client.__aenter__(), timeout=self.connect_timeout)
        except TimeoutError as exc:
            registry.record_connect(session.client_id, "timeout")
            logger.warning("%s Handshake timed out after %.1fs", lp, self.connect_timeout)
            reason = f"handshake not completed within {self.connect_timeout}s"
            raise YotoConnectionError(reason, self.state.value) from exc
        except aiomqtt.MqttError as exc:
            registry.record_connect(session.client_id, "error")
            logger.warning("%s Handshake failed: %s", lp, exc, extra={"client_id": session.client_id})
            raise YotoConnectionError(str(exc), self.state.value) from exc

        registry.record_connect(session.client_id, "success")
        self.client = client

    async def _on_established(self, session: Session) -> None:
        """Replay hooks, start the receiver and only then report CONNECTED."""
        lp = f"{self.lp}established:"
        session.reconnect_attempt = 0
        session.backoff_delay = 0.0
        session.connected_at = time.time()

        for hook in self._connect_hooks:
            try:
                await hook()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("%s Connect hook %r failed", lp, hook)

        assert self.client is not None, "client must be set after handshake"
        self.receiver_task = asyncio.create_task(self._receive_loop(self.client))
        self._transition(ConnectionState.CONNECTED)
        logger.info(
            "%s Connected to MQTT broker %s:%s",
            lp,
            session.host,
            session.port,
            extra={"client_id": session.client_id},
        )

    async def connect(self, credential: str, identity: str) -> Session:
        """Open a session to the broker.

        Args:
            credential: Bearer access token, sent as the MQTT password
            identity: Device identifier the client id is derived from

        Returns:
            The established Session

        Raises:
            YotoConnectionError: Handshake failed or timed out

        """
        lp = f"{self.lp}connect:"
        if self.session is not None or self.client is not None:
            logger.debug("%s Existing session found, disconnecting first...", lp)
            await self.disconnect()

        session = self._new_session(credential, identity)
        self.session = session
        self.terminal_error = None
        self._transition(ConnectionState.CONNECTING)
        logger.info("%s Connecting to %s:%s as %s", lp, session.host, session.port, session.client_id)

        try:
            await self._open(session)
        except YotoConnectionError:
            self._transition(ConnectionState.DISCONNECTED)
            self.session = None
            raise

        await self._on_established(session)
        return session

    # ---------------------------------------------------------------- receive

    async def _deliver(self, topic: str, payload: bytes) -> None:
        if self._message_handler is None:
            logger.debug("%s No message handler, dropping message on %s", self.lp, topic)
            return
        try:
            await self._message_handler(topic, payload)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("%s Message handler failed for topic %s", self.lp, topic)

    async def _receive_loop(self, client: aiomqtt.Client) -> None:
        lp = f"{self.lp}rcv:"
        try:
            async for message in client.messages:
                topic = message.topic.value
                with correlation_context():
                    await self._deliver(topic, _payload_bytes(message.payload))
        except asyncio.CancelledError:
            logger.debug("%s Receiver task cancelled", lp)
            raise
        except aiomqtt.MqttError as exc:
            logger.warning("%s Connection lost: %s", lp, exc)
            self._trigger_reconnect(str(exc))
        else:
            self._trigger_reconnect("message stream ended")

    # -------------------------------------------------------------- reconnect

    def _trigger_reconnect(self, reason: str) -> None:
        """Start the reconnect loop after an unexpected close, at most once."""
        if self.state is not ConnectionState.CONNECTED:
            logger.debug("%s Ignoring close (%s) in state %s", self.lp, reason, self.state.value)
            return
        if self.reconnect_task is not None and not self.reconnect_task.done():
            logger.debug("%s Reconnection already in progress (%s)", self.lp, reason)
            return
        logger.info("%s Unexpected close, reconnecting", self.lp, extra={"reason": reason})
        self._transition(ConnectionState.RECONNECTING)
        self.reconnect_task = asyncio.create_task(self._reconnect_loop(reason))

    async def _close_client(self) -> None:
        client, self.client = self.client, None
        if client is None:
            return
        try:
            await client.__aexit__(None, None, None)
        except aiomqtt.MqttError as exc:
            logger.debug("%s Closing client raised: %s", self.lp, exc)

    async def _reconnect_loop(self, reason: str) -> None:
        lp = f"{self.lp}reconnect:"
        session = self.session
        assert session is not None, "reconnect requires a session"
        await self._close_client()

        policy = self.reconnect_policy
        attempt = 0
        last_error: YotoConnectionError | None = None
        while not policy.exhausted(attempt):
            delay = policy.get_delay(attempt)
            session.reconnect_attempt = attempt
            session.backoff_delay = delay
            logger.info(
                "%s Attempt %d/%d in %.1fs",
                lp,
                attempt + 1,
                policy.max_attempts,
                delay,
                extra={"reason": reason},
            )
            await asyncio.sleep(delay)
            registry.record_reconnection(session.client_id, attempt + 1)
            try:
                await self._open(session)
            except YotoConnectionError as exc:
                last_error = exc
                attempt += 1
                continue
            await self._on_established(session)
            return

        self._fail(ConnectionFailedError(attempt, last_error))

    def _fail(self, error: ConnectionFailedError) -> None:
        logger.error("%s %s, giving up", self.lp, error)
        self._transition(ConnectionState.FAILED)
        self.terminal_error = error
        self.session = None
        self._run_disconnect_hooks()
        self._notify_error(None, error)

    def _notify_error(self, device_id: str | None, error: BaseException) -> None:
        for listener in list(self._error_listeners):
            try:
                listener(device_id, error)
            except Exception:
                logger.exception("%s Error listener failed", self.lp)

    def _run_disconnect_hooks(self) -> None:
        for hook in self._disconnect_hooks:
            try:
                hook()
            except Exception:
                logger.exception("%s Disconnect hook %r failed", self.lp, hook)

    # ------------------------------------------------------------- disconnect

    async def disconnect(self) -> None:
        """Close the session and clear subscriptions. Safe to call repeatedly."""
        if self.session is None and self.client is None and self.receiver_task is None:
            return

        lp = f"{self.lp}disconnect:"
        logger.debug("%s Disconnecting...", lp)
        # Leave CONNECTED first so the ending receiver does not trigger a reconnect
        self._transition(ConnectionState.DISCONNECTED)

        current = asyncio.current_task()
        for task in (self.receiver_task, self.reconnect_task):
            if task is not None and task is not current and not task.done():
                _ = task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self.receiver_task = None
        self.reconnect_task = None

        try:
            await self._close_client()
        finally:
            self.session = None
            self._run_disconnect_hooks()
            logger.info("%s Disconnected from MQTT broker", lp)

    # -------------------------------------------------------------------- I/O

    async def publish(self, topic: str, payload: bytes, *, timeout: float, qos: int = 0) -> None:
        """Publish and wait for the transport to confirm the send.

        Raises:
            NotConnectedError: No connected session, or the send failed at the transport
            PublishTimeoutError: No confirmation within ``timeout`` seconds

        """
        client = self._require_connected("publish")
        try:
            await asyncio.wait_for(client.publish(topic, payload, qos=qos, retain=False), timeout=timeout)
        except TimeoutError as exc:
            raise PublishTimeoutError(topic, timeout) from exc
        except aiomqtt.MqttError as exc:
            logger.warning("%s Publish to %s failed: %s", self.lp, topic, exc)
            raise NotConnectedError("publish", self.state.value) from exc

    async def subscribe(self, topics: tuple[str, ...], qos: int = 0) -> tuple[str, ...]:
        """Subscribe to all topics in one request.

        Returns:
            Topics the broker refused (empty when all were granted)

        Raises:
            NotConnectedError: No live broker connection
            YotoConnectionError: The SUBSCRIBE could not be completed

        """
        client = self._require_client("subscribe")
        try:
            granted = await asyncio.wait_for(
                client.subscribe([(topic, qos) for topic in topics]),
                timeout=self.connect_timeout,
            )
        except TimeoutError as exc:
            raise YotoConnectionError("subscribe not acknowledged", self.state.value) from exc
        except aiomqtt.MqttError as exc:
            raise YotoConnectionError(str(exc), self.state.value) from exc

        codes = list(granted) if granted is not None else []
        if len(codes) != len(topics):
            # Unmatched SUBACK: treat every topic without a code as refused
            codes.extend([_SUBACK_FAILURE_THRESHOLD] * (len(topics) - len(codes)))
        return tuple(topic for topic, code in zip(topics, codes, strict=False) if _is_refused(code))

    async def unsubscribe(self, topics: tuple[str, ...]) -> None:
        client = self._require_client("unsubscribe")
        try:
            await asyncio.wait_for(client.unsubscribe(list(topics)), timeout=self.connect_timeout)
        except TimeoutError as exc:
            raise YotoConnectionError("unsubscribe not acknowledged", self.state.value) from exc
        except aiomqtt.MqttError as exc:
            raise YotoConnectionError(str(exc), self.state.value) from exc
