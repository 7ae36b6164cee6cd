"""
Hub Controller.

Cloud-side proxy for one Smart Home device. Each operation invokes one
remote method with a 30 second response deadline and returns the decoded
body on status 200. Any other status raises RemoteMethodError; nothing is
retried. The controller does not print anything: reporting is up to the
caller.
"""
import logging
from typing import List, Optional

from pi_smart_home import protocol
from pi_smart_home.client.connection import RPCConnection
from pi_smart_home.config_loader import parse_connection_string
from pi_smart_home.errors import ConfigurationError, PayloadError, RemoteMethodError
from pi_smart_home.models import ActuatorState, EnvironmentReading, MethodResponse

logger = logging.getLogger(__name__)


class HubController:
    device_id: str
    timeout: float
    _connection: Optional[RPCConnection]

    def __init__(self, connection_string: Optional[str], device_id: str = protocol.DEFAULT_DEVICE_ID,
                 *, timeout: float = protocol.DEFAULT_RESPONSE_TIMEOUT,
                 connection: Optional[RPCConnection] = None):
        """
        Validates the connection string before anything touches the network.
        `connection` replaces the MQTT connection built from the string.
        """
        if not connection_string:
            raise ConfigurationError("Connection string can not be null or empty")
        if not device_id:
            raise ConfigurationError("Device id can not be null or empty")
        self.device_id = device_id
        self.timeout = timeout
        self._connection = connection or RPCConnection(parse_connection_string(connection_string))

    async def connect(self):
        """Opens the connection. Failures surface as ConnectionInitError."""
        if self._connection is None:
            raise RuntimeError("HubController is closed")
        await self._connection.connect()

    async def close(self):
        """Releases the connection. Safe to call more than once."""
        connection, self._connection = self._connection, None
        if connection is not None:
            await connection.close()

    async def __aenter__(self) -> "HubController":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def _invoke(self, method: str, payload: Optional[bytes] = None) -> MethodResponse:
        if self._connection is None:
            raise RuntimeError("HubController is closed")
        response = await self._connection.invoke(self.device_id, method, payload, timeout=self.timeout)
        logger.debug(f"'{method}' on '{self.device_id}' answered {response.status}")
        if not response.ok:
            raise RemoteMethodError(method, response.status, response.payload)
        return response

    async def set_actuator_state(self, bulb_id: int, on: bool) -> None:
        """Turns one light bulb on or off."""
        payload = ActuatorState(id=bulb_id, state=on).to_bytes()
        await self._invoke(protocol.CHANGE_LIGHT_BULB_STATE, payload)

    async def get_actuator_states(self) -> List[ActuatorState]:
        """Returns the state of every light bulb the device reports."""
        response = await self._invoke(protocol.GET_LIGHT_BULB_STATUS)
        return ActuatorState.list_from_json(response.payload or b"")

    async def get_environment_reading(self) -> EnvironmentReading:
        """Returns the current temperature (Fahrenheit) and pressure (Pascals)."""
        response = await self._invoke(protocol.GET_TEMPERATURE_AND_PREASSURE)
        if not response.payload:
            raise PayloadError("Environment reading response has no body")
        return EnvironmentReading.from_json(response.payload)
