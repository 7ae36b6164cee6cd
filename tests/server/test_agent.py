import pytest
from unittest.mock import AsyncMock

from pi_smart_home.config_loader import ConnectionSettings
from pi_smart_home.errors import ConfigurationError
from pi_smart_home.server.agent import DeviceAgent
from pi_smart_home.server.hardware import LightBulbBank


@pytest.fixture
def settings():
    return ConnectionSettings(host="localhost", port=1883, device_id="MyRaspberryPi")


@pytest.fixture
def agent(settings, stub_sensor):
    agent = DeviceAgent(settings, {"bulbs": {1: 26, 2: 20, 3: 21}}, sensor=stub_sensor)
    yield agent
    agent._release_hardware()


def test_construction_drives_bulbs_off_and_binds_handlers(agent, mock_pin):
    assert all(mock_pin(pin).state for pin in (26, 20, 21))
    assert agent.rpc_handler.states == {1: False, 2: False, 3: False}
    assert agent.rpc_handler.reported_bulbs == (1, 3)
    assert agent.transport.device_id == "MyRaspberryPi"


def test_reported_bulbs_come_from_config(settings, stub_sensor):
    agent = DeviceAgent(settings, {"reported_bulbs": [1, 2, 3]}, sensor=stub_sensor)
    try:
        assert agent.rpc_handler.reported_bulbs == (1, 2, 3)
    finally:
        agent._release_hardware()


def test_construction_failure_releases_opened_hardware(settings, stub_sensor, mock_pin):
    with pytest.raises(ConfigurationError):
        DeviceAgent(settings, {"bulbs": {1: 26, 2: 26}}, sensor=stub_sensor)
    stub_sensor.close.assert_not_called()  # failed before the sensor was taken over

    bank = LightBulbBank({1: 26})
    with pytest.raises(ConfigurationError):
        DeviceAgent(settings, {"reported_bulbs": [2]}, bulbs=bank, sensor=stub_sensor)
    assert bank.lines is None
    stub_sensor.close.assert_called_once()


def test_from_connection_string_parses_credential(stub_sensor):
    with pytest.raises(ConfigurationError):
        DeviceAgent.from_connection_string("")


@pytest.mark.asyncio
async def test_close_releases_transport_then_outputs_then_sensor(agent, stub_sensor, mocker):
    order = []
    mocker.patch.object(agent.transport, "stop", AsyncMock(side_effect=lambda: order.append("transport")))
    real_bank_close = agent.bulbs.close

    def close_bank():
        order.append("bulbs")
        real_bank_close()

    mocker.patch.object(agent.bulbs, "close", side_effect=close_bank)
    stub_sensor.close.side_effect = lambda: order.append("sensor")

    await agent.close()
    await agent.close()

    assert order == ["transport", "bulbs", "sensor"]
    assert agent.transport is None
    assert agent.bulbs is None
    assert agent.sensor is None


@pytest.mark.asyncio
async def test_async_context_manager_starts_and_closes(agent, mocker):
    start = mocker.patch.object(agent.transport, "start", AsyncMock())
    stop = mocker.patch.object(agent.transport, "stop", AsyncMock())

    async with agent as running:
        assert running is agent
        start.assert_awaited_once()

    stop.assert_awaited_once()
    assert agent.bulbs is None


def test_malformed_sensor_config_is_a_configuration_error(settings):
    with pytest.raises(ConfigurationError):
        DeviceAgent(settings, {"sensor": {"address": "seventy-seven"}})


@pytest.mark.asyncio
async def test_start_after_close_is_rejected(agent, mocker):
    mocker.patch.object(agent.transport, "stop", AsyncMock())
    await agent.close()
    with pytest.raises(RuntimeError):
        await agent.start()
