"""
MQTT v5 Client Connection and RPC Request/Response Management.

This module provides:
- A wrapper around `aiomqtt` for connecting to the broker.
- The MQTT v5 Request/Response (RPC) pattern: a correlation id per call,
  a private response topic, and a table of pending futures.
- Response deadlines: a call that is not answered in time fails with
  MethodTimeoutError and its pending entry is discarded.
- Broker loss: pending calls fail with ConnectionLostError at once, and so
  does every later call until the connection is closed.
"""
import asyncio
import logging
import ssl
import uuid
from contextlib import AsyncExitStack
from typing import Dict, Optional

from aiomqtt import Client as MQTTClient, Message, MqttError, ProtocolVersion

from pi_smart_home import protocol
from pi_smart_home.config_loader import ConnectionSettings
from pi_smart_home.errors import ConnectionInitError, ConnectionLostError, MethodTimeoutError, SmartHomeError
from pi_smart_home.models import MethodResponse

logger = logging.getLogger(__name__)


class RPCConnection:
    settings: ConnectionSettings
    client_id: str
    topic_prefix: str
    reply_to: str
    _client: Optional[MQTTClient]
    _exit_stack: Optional[AsyncExitStack]
    _reader_task: Optional[asyncio.Task]
    _pending: Dict[bytes, asyncio.Future]
    _lost: Optional[MqttError]

    def __init__(self, settings: ConnectionSettings, client_id: Optional[str] = None,
                 topic_prefix: str = protocol.DEFAULT_TOPIC_PREFIX,
                 response_prefix: str = protocol.DEFAULT_RESPONSE_PREFIX):
        self.settings = settings
        self.client_id = client_id or f"controller-{uuid.uuid4().hex[:12]}"
        self.topic_prefix = topic_prefix
        self.reply_to = protocol.response_topic(self.client_id, response_prefix)
        self._client = None
        self._exit_stack = None
        self._reader_task = None
        self._pending = {}
        self._lost = None

    @property
    def connected(self) -> bool:
        return self._client is not None

    def _create_client(self) -> MQTTClient:
        return MQTTClient(
            self.settings.host,
            self.settings.port,
            protocol=ProtocolVersion.V5,
            identifier=self.client_id,
            username=self.settings.username,
            password=self.settings.password,
            tls_context=ssl.create_default_context() if self.settings.use_tls else None,
        )

    async def connect(self):
        """Opens the connection and starts listening on the response topic."""
        if self._client is not None:
            return
        exit_stack = AsyncExitStack()
        try:
            client = await exit_stack.enter_async_context(self._create_client())
            await client.subscribe(self.reply_to, qos=1)
        except Exception as e:
            await exit_stack.aclose()
            raise ConnectionInitError(
                f"Error when connecting with the MQTT broker at {self.settings.host}:{self.settings.port}"
            ) from e

        self._exit_stack = exit_stack
        self._client = client
        self._lost = None
        self._reader_task = asyncio.create_task(self._reader_loop(client))
        logger.info(f"Controller {self.client_id} connected to {self.settings.host}:{self.settings.port}")

    async def close(self):
        """Fails every pending call and closes the connection. Safe to call more than once."""
        self._client = None
        exit_stack, self._exit_stack = self._exit_stack, None
        reader, self._reader_task = self._reader_task, None
        try:
            if reader is not None:
                reader.cancel()
                try:
                    await reader
                except asyncio.CancelledError:
                    pass
                except Exception as e:
                    # Already logged by the reader loop
                    logger.debug(f"Response reader had ended with: {e!r}")
        finally:
            self._fail_pending(SmartHomeError("Connection closed before a response arrived"))
            if exit_stack is not None:
                try:
                    await exit_stack.aclose()
                except MqttError as e:
                    logger.warning(f"Controller {self.client_id} did not disconnect cleanly: {e}")
                logger.info(f"Controller {self.client_id} disconnected.")

    async def invoke(self, device_id: str, method: str, payload: Optional[bytes] = None,
                     timeout: float = protocol.DEFAULT_RESPONSE_TIMEOUT) -> MethodResponse:
        """
        Publishes a request to `device_id` and waits for its response.
        The deadline covers both the publish and the wait; no response within
        `timeout` seconds raises MethodTimeoutError.
        """
        if self._lost is not None:
            raise ConnectionLostError(f"Connection to the broker was lost: {self._lost}")
        if self._client is None:
            raise SmartHomeError("Connection is not open")

        correlation_data = uuid.uuid4().bytes
        future = asyncio.get_running_loop().create_future()
        self._pending[correlation_data] = future
        try:
            return await asyncio.wait_for(
                self._request(self._client, device_id, method, payload, correlation_data, future),
                timeout,
            )
        except asyncio.TimeoutError:
            raise MethodTimeoutError(method, timeout) from None
        except MqttError as e:
            raise ConnectionLostError(f"Could not publish '{method}': {e}") from e
        finally:
            self._pending.pop(correlation_data, None)

    async def _request(self, client: MQTTClient, device_id: str, method: str, payload: Optional[bytes],
                       correlation_data: bytes, future: asyncio.Future) -> MethodResponse:
        await client.publish(
            protocol.method_topic(device_id, method, self.topic_prefix),
            payload=payload or b"",
            qos=1,
            properties=protocol.request_properties(self.reply_to, correlation_data),
        )
        logger.debug(f"Invoked '{method}' on '{device_id}' (correlation {correlation_data.hex()})")
        return await future

    async def _reader_loop(self, client: MQTTClient):
        try:
            async for message in client.messages:
                self.handle_response(message)
        except MqttError as e:
            logger.error(f"Controller {self.client_id} lost the broker connection: {e}")
            self._lost = e
            self._fail_pending(ConnectionLostError(f"Connection to the broker was lost: {e}"))

    def _fail_pending(self, error: SmartHomeError):
        for future in self._pending.values():
            if not future.done():
                future.set_exception(error)
        self._pending.clear()

    def handle_response(self, message: Message):
        correlation_data = protocol.get_correlation_data(message.properties)
        future = self._pending.get(bytes(correlation_data)) if correlation_data else None
        if future is None:
            logger.warning(f"Dropping response on '{message.topic}' with unknown correlation data")
            return
        if future.done():
            return

        status = protocol.get_status(message.properties)
        if status is None:
            future.set_exception(SmartHomeError("Response carries no status code"))
            return
        payload = message.payload
        if isinstance(payload, str):
            payload = payload.encode("utf-8")
        elif not isinstance(payload, (bytes, bytearray)):
            payload = None
        future.set_result(MethodResponse(status=status, payload=bytes(payload) if payload else None))
