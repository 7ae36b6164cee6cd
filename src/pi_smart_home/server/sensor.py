"""
BME280 Temperature/Pressure Sensor.

Opens the I2C bus once and loads the sensor's calibration, then takes one
forced-mode sample per read. I/O faults are not caught here: a sensor that
stops answering is a fault the caller must see.
"""
import logging
from typing import Optional, Tuple

import bme280
import smbus2

from pi_smart_home.errors import ConfigurationError

DEFAULT_I2C_BUS = 1
DEFAULT_I2C_ADDRESS = 0x77

logger = logging.getLogger(__name__)


def celsius_to_fahrenheit(celsius: float) -> float:
    return celsius * 9.0 / 5.0 + 32.0


def hectopascals_to_pascals(hectopascals: float) -> float:
    return hectopascals * 100.0


def _int_setting(conf: dict, key: str, default: int) -> int:
    # Strings accept any base prefix, so "0x77" works as well as 0x77
    value = conf.get(key, default)
    try:
        return int(value, 0) if isinstance(value, str) else int(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid sensor {key}: {value!r}") from e


class EnvironmentSensor:
    bus_number: int
    address: int
    _bus: Optional[smbus2.SMBus]

    def __init__(self, bus_number: int = DEFAULT_I2C_BUS, address: int = DEFAULT_I2C_ADDRESS):
        self.bus_number = bus_number
        self.address = address
        self._bus = smbus2.SMBus(bus_number)
        try:
            self._calibration = bme280.load_calibration_params(self._bus, address)
        except Exception:
            self.close()
            raise
        logger.info(f"BME280 ready on I2C bus {bus_number} at address {address:#04x}")

    @classmethod
    def from_config(cls, config: dict) -> "EnvironmentSensor":
        sensor_conf = config.get("sensor", {}) or {}
        if not isinstance(sensor_conf, dict):
            raise ConfigurationError(f"'sensor' must be a mapping, got {sensor_conf!r}")
        return cls(
            bus_number=_int_setting(sensor_conf, "bus", DEFAULT_I2C_BUS),
            address=_int_setting(sensor_conf, "address", DEFAULT_I2C_ADDRESS),
        )

    def read(self) -> Tuple[float, float]:
        """Returns (temperature in Fahrenheit, pressure in Pascals)."""
        if self._bus is None:
            raise RuntimeError("Sensor is closed")
        sample = bme280.sample(self._bus, self.address, self._calibration)
        return celsius_to_fahrenheit(sample.temperature), hectopascals_to_pascals(sample.pressure)

    def close(self):
        """Closes the I2C bus. Safe to call more than once."""
        if self._bus is None:
            return
        bus, self._bus = self._bus, None
        bus.close()
        logger.info("BME280 sensor released.")
