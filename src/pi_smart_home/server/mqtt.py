"""
MQTT v5 Transport for the Agent.

This module is responsible for:
- Connecting to the broker named in the device connection string.
- Subscribing to the device's remote method topics.
- Handing each request to the `RPCHandler` and publishing the response
  on the caller's response topic, echoing its correlation data.
- Maintaining the retained online/offline presence message (with Last Will).
"""
import asyncio
import logging
import ssl
from typing import Optional

from aiomqtt import Client as MQTTClient, Message, MqttError, ProtocolVersion, Will

from pi_smart_home import protocol
from pi_smart_home.config_loader import ConnectionSettings
from pi_smart_home.errors import ConfigurationError, ConnectionInitError
from pi_smart_home.models import MethodResponse, SystemStatus, SystemStatusPayload
from pi_smart_home.server.rpc_handler import RPCHandler

logger = logging.getLogger(__name__)


class MQTTManager:
    settings: ConnectionSettings
    rpc_handler: RPCHandler
    device_id: str
    topic_prefix: str
    client_id: str
    status_topic: str
    _main_task: Optional[asyncio.Task]
    _client: Optional[MQTTClient]

    """
    Owns the agent's broker connection and the request/response loop.
    """
    def __init__(self, settings: ConnectionSettings, rpc_handler: RPCHandler, config: Optional[dict] = None):
        self.settings = settings
        self.rpc_handler = rpc_handler

        mqtt_conf = (config or {}).get('mqtt', {}) or {}
        if not isinstance(mqtt_conf, dict):
            raise ConfigurationError(f"'mqtt' must be a mapping, got {mqtt_conf!r}")
        self.device_id = settings.device_id or mqtt_conf.get('device_id', protocol.DEFAULT_DEVICE_ID)
        self.topic_prefix = mqtt_conf.get('topic_prefix', protocol.DEFAULT_TOPIC_PREFIX)
        self.client_id = mqtt_conf.get('client_id', self.device_id)
        self.status_topic = protocol.status_topic(self.device_id, self.topic_prefix)

        # Internal state
        self._main_task = None
        self._client = None

    @property
    def task(self) -> Optional[asyncio.Task]:
        """The running connection task; it finishes with an exception on a fatal fault."""
        return self._main_task

    def _create_client(self) -> MQTTClient:
        # If we crash, the broker sets the status topic to "offline" (retained)
        last_will = Will(
            topic=self.status_topic,
            payload=SystemStatusPayload(status=SystemStatus.OFFLINE).to_bytes(),
            qos=1,
            retain=True,
        )
        return MQTTClient(
            self.settings.host,
            self.settings.port,
            protocol=ProtocolVersion.V5,
            identifier=self.client_id,
            username=self.settings.username,
            password=self.settings.password,
            will=last_will,
            tls_context=ssl.create_default_context() if self.settings.use_tls else None,
        )

    async def start(self):
        """
        Connects, subscribes and launches the request loop in the background.
        Returns once the subscription is active; a failure raises ConnectionInitError.
        """
        if self._main_task is not None:
            logger.warning("MQTT Manager already started.")
            return
        logger.info(f"Starting MQTT Manager, connecting to {self.settings.host}:{self.settings.port}...")
        ready = asyncio.get_running_loop().create_future()
        self._main_task = asyncio.create_task(self._main_loop(ready))
        try:
            await ready
        except Exception as e:
            await self._reap_main_task()
            raise ConnectionInitError(f"Error when connecting with the MQTT broker: {e}") from e

    async def stop(self):
        """
        Publishes 'offline' and cancels the main loop, which closes the connection.
        Safe to call more than once.
        """
        if self._main_task is None:
            return
        logger.info("Stopping MQTT Manager...")
        if self._client is not None:
            try:
                await self._client.publish(
                    self.status_topic,
                    payload=SystemStatusPayload(status=SystemStatus.OFFLINE).to_bytes(),
                    qos=1,
                    retain=True,
                )
            except MqttError as e:
                logger.error(f"Could not publish offline status: {e}")
        await self._reap_main_task()
        logger.info("MQTT Manager stopped gracefully.")

    async def _reap_main_task(self):
        task, self._main_task = self._main_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            # Already logged by the main loop; the owner observed it via `task`.
            logger.debug(f"MQTT main loop had ended with: {e!r}")

    async def _main_loop(self, ready: asyncio.Future):
        """
        The connection lifetime. The client is ONLY valid inside this block.
        There is no reconnect: losing the broker ends the loop with an error log.
        """
        try:
            async with self._create_client() as client:
                self._client = client
                await client.subscribe(protocol.method_subscription(self.device_id, self.topic_prefix), qos=1)
                await client.publish(
                    self.status_topic,
                    payload=SystemStatusPayload(status=SystemStatus.ONLINE).to_bytes(),
                    qos=1,
                    retain=True,
                )
                logger.info(f"Connected to broker as {self.client_id}! Status: online")
                ready.set_result(None)

                await self._request_loop(client)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if not ready.done():
                ready.set_exception(e)
                return
            logger.error(f"Agent transport stopped: {e!r}")
            raise
        finally:
            self._client = None

    async def _request_loop(self, client: MQTTClient):
        """Handles requests one at a time, in arrival order."""
        async for message in client.messages:
            await self.handle_message(client, message)

    async def handle_message(self, client: MQTTClient, message: Message):
        method = protocol.method_from_topic(str(message.topic))
        reply_to = protocol.get_response_topic(message.properties)
        correlation_data = protocol.get_correlation_data(message.properties)
        payload = message.payload if isinstance(message.payload, (bytes, bytearray)) else None
        if isinstance(message.payload, str):
            payload = message.payload.encode("utf-8")
        logger.debug(f"Request '{method}' received on '{message.topic}'")

        # Hardware calls are blocking; keep them off the event loop.
        # A hardware fault propagates and ends the request loop.
        response: MethodResponse = await asyncio.to_thread(self.rpc_handler.dispatch, method, payload)

        if not reply_to:
            logger.warning(f"Request '{method}' has no response topic; response with status {response.status} dropped.")
            return

        await client.publish(
            reply_to,
            payload=response.payload or b"",
            qos=1,
            properties=protocol.response_properties(response.status, correlation_data),
        )
        logger.debug(f"Response to '{method}' published to '{reply_to}' with status {response.status}")
