"""
Pytest Configuration and Fixtures for the pi_smart_home project.

This module provides the hardware and transport doubles that let the tests
run on any development machine, not just a Raspberry Pi:
- gpiozero's MockFactory as the pin factory, reset before each test.
- A stub BME280 sensor.
- A fake aiomqtt client that records publishes and replays queued messages.
"""

import asyncio
import sys
import logging
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

# --- Configure GPIO Zero to use MockFactory ---
# Any DigitalOutputDevice(pin) created by the code under test gets a mock pin.
# Read https://gpiozero.readthedocs.io/en/stable/api_pins.html for more details on pin factories.
from gpiozero import Device
from gpiozero.pins.mock import MockFactory

_mock_factory_instance = MockFactory()
Device.pin_factory = _mock_factory_instance


@pytest.fixture(scope="session", autouse=True)
def setup_test_logging():
    """
    Configures the Python logging framework globally for all tests.
    Because tests bypass main.py, this ensures our logs are formatted
    and visible exactly how we want them during test runs.
    """
    formatter = logging.Formatter(fmt="%(levelname)-8s %(message)s - %(funcName)s:%(lineno)d ")
    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(formatter)
    logger = logging.getLogger()
    logger.setLevel(logging.DEBUG)
    logger.addHandler(handler)


@pytest.fixture(autouse=True)
def reset_mock_gpio_pins_before_each_test():
    """
    Resets the MockFactory's pins before each test to ensure a clean state.
    This fixture is autoused, meaning it runs automatically for every test.
    """
    _mock_factory_instance.reset()
    yield
    _mock_factory_instance.reset()


@pytest.fixture
def mock_pin():
    """Returns the mock pin for a BCM number, e.g. mock_pin(26).state."""
    return _mock_factory_instance.pin


class StubSensor:
    """Stands in for the BME280: returns a fixed reading, or raises `fault`."""

    def __init__(self, temperature_f=72.5, pressure_pa=101325.0, fault=None):
        self.temperature_f = temperature_f
        self.pressure_pa = pressure_pa
        self.fault = fault
        self.reads = 0
        self.close = MagicMock()

    def read(self):
        self.reads += 1
        if self.fault is not None:
            raise self.fault
        return self.temperature_f, self.pressure_pa


@pytest.fixture
def stub_sensor():
    return StubSensor()


@pytest.fixture
def stub_sensor_factory():
    return StubSensor


class FakeMQTTClient:
    """
    Enough of aiomqtt.Client for the agent and the controller:
    async context manager, subscribe, publish and the `messages` iterator.
    """

    def __init__(self):
        self.subscribe = AsyncMock()
        self.publish = AsyncMock()
        self.incoming = asyncio.Queue()
        self.entered = False
        self.exited = False

    async def __aenter__(self):
        self.entered = True
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.exited = True
        return False

    def deliver(self, topic, payload=b"", properties=None):
        self.incoming.put_nowait(SimpleNamespace(topic=topic, payload=payload, properties=properties))

    def drop(self, error):
        """Ends the `messages` iterator with `error`, as aiomqtt does when the broker goes away."""
        self.incoming.put_nowait(error)

    @property
    def messages(self):
        return self._iterate()

    async def _iterate(self):
        while True:
            item = await self.incoming.get()
            if isinstance(item, Exception):
                raise item
            yield item


@pytest.fixture
def fake_mqtt_client():
    return FakeMQTTClient()


def make_message(topic, payload=b"", properties=None):
    return SimpleNamespace(topic=topic, payload=payload, properties=properties)


@pytest.fixture
def message_factory():
    return make_message
