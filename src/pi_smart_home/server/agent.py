"""
Device Agent.

Owns the three external handles of the device side (broker connection,
light bulb outputs, BME280 sensor) and releases them together.
"""
import logging
from typing import Optional

from pi_smart_home.config_loader import ConnectionSettings, parse_connection_string
from pi_smart_home.server.hardware import LightBulbBank, bulb_pins_from_config
from pi_smart_home.server.mqtt import MQTTManager
from pi_smart_home.server.rpc_handler import DEFAULT_REPORTED_BULBS, RPCHandler
from pi_smart_home.server.sensor import EnvironmentSensor

logger = logging.getLogger(__name__)


class DeviceAgent:
    """
    Opening the agent drives every bulb off, opens the sensor and binds the
    remote method handlers. `start()` then connects to the broker.
    """
    bulbs: Optional[LightBulbBank]
    sensor: Optional[EnvironmentSensor]
    transport: Optional[MQTTManager]

    def __init__(self, settings: ConnectionSettings, config: Optional[dict] = None,
                 bulbs: Optional[LightBulbBank] = None, sensor: Optional[EnvironmentSensor] = None):
        config = config or {}
        self.bulbs = None
        self.sensor = None
        self.transport = None
        try:
            self.bulbs = bulbs if bulbs is not None else LightBulbBank(bulb_pins_from_config(config))
            self.sensor = sensor if sensor is not None else EnvironmentSensor.from_config(config)
            self.rpc_handler = RPCHandler(
                self.bulbs,
                self.sensor,
                reported_bulbs=config.get("reported_bulbs", DEFAULT_REPORTED_BULBS),
            )
            self.transport = MQTTManager(settings, self.rpc_handler, config)
        except Exception:
            self._release_hardware()
            raise

    @classmethod
    def from_connection_string(cls, connection_string: str, config: Optional[dict] = None) -> "DeviceAgent":
        return cls(parse_connection_string(connection_string), config)

    async def start(self):
        if self.transport is None:
            raise RuntimeError("DeviceAgent is closed")
        await self.transport.start()

    async def close(self):
        """Releases the connection, then the outputs, then the sensor. Idempotent."""
        transport, self.transport = self.transport, None
        if transport is not None:
            await transport.stop()
        self._release_hardware()

    def _release_hardware(self):
        bulbs, self.bulbs = self.bulbs, None
        if bulbs is not None:
            bulbs.close()
        sensor, self.sensor = self.sensor, None
        if sensor is not None:
            sensor.close()

    async def __aenter__(self) -> "DeviceAgent":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()
