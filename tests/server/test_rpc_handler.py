import json

import pytest

from pi_smart_home import protocol
from pi_smart_home.errors import ConfigurationError, HandlerRegistrationError
from pi_smart_home.models import ActuatorState
from pi_smart_home.server.hardware import DEFAULT_BULB_PINS, LightBulbBank
from pi_smart_home.server.rpc_handler import RPCHandler

"""
Tests for the remote method dispatch table and the light bulb state it keeps.
"""


@pytest.fixture
def bank():
    bank = LightBulbBank(DEFAULT_BULB_PINS)
    yield bank
    bank.close()


@pytest.fixture
def handler(bank, stub_sensor):
    return RPCHandler(bank, stub_sensor)


def change(handler, bulb_id, state):
    return handler.dispatch(protocol.CHANGE_LIGHT_BULB_STATE, ActuatorState(id=bulb_id, state=state).to_bytes())


def reported_states(handler):
    response = handler.dispatch(protocol.GET_LIGHT_BULB_STATUS, None)
    assert response.status == 200
    return {item.id: item.state for item in ActuatorState.list_from_json(response.payload)}


def test_handlers_are_bound_at_construction(handler):
    assert set(handler.handlers) == set(protocol.METHOD_NAMES)


def test_duplicate_registration_is_rejected(handler):
    with pytest.raises(HandlerRegistrationError):
        handler.register(protocol.GET_LIGHT_BULB_STATUS, lambda payload: None)
    with pytest.raises(HandlerRegistrationError):
        handler.register("Reboot", "not callable")


def test_reported_bulbs_must_be_configured(bank, stub_sensor):
    with pytest.raises(ConfigurationError):
        RPCHandler(bank, stub_sensor, reported_bulbs=[1, 4])


@pytest.mark.parametrize("reported_bulbs", [3, None, "13", ["one"]])
def test_malformed_reported_bulbs_is_a_configuration_error(bank, stub_sensor, reported_bulbs):
    with pytest.raises(ConfigurationError):
        RPCHandler(bank, stub_sensor, reported_bulbs=reported_bulbs)


def test_initial_state_is_all_off(handler):
    assert handler.states == {1: False, 2: False, 3: False}


@pytest.mark.parametrize("bulb_id", [1, 2, 3])
@pytest.mark.parametrize("state", [True, False])
def test_change_then_status(handler, bulb_id, state):
    response = change(handler, bulb_id, state)
    assert response.status == 200
    assert handler.states[bulb_id] is state

    reported = reported_states(handler)
    if bulb_id == 2:
        # Bulb 2 is never part of the status report.
        assert 2 not in reported
    else:
        assert reported[bulb_id] is state


def test_status_reports_bulbs_one_and_three_only(handler):
    change(handler, 2, True)
    response = handler.dispatch(protocol.GET_LIGHT_BULB_STATUS, None)
    assert json.loads(response.payload) == [{"id": 1, "state": False}, {"id": 3, "state": False}]


def test_reported_bulbs_can_be_configured(bank, stub_sensor):
    handler = RPCHandler(bank, stub_sensor, reported_bulbs=[1, 2, 3])
    change(handler, 2, True)
    assert reported_states(handler) == {1: False, 2: True, 3: False}


@pytest.mark.parametrize("bulb_id", [0, 4, -1, 99])
def test_unknown_bulb_returns_500_without_mutation(handler, mock_pin, bulb_id, caplog):
    change(handler, 1, True)
    before = dict(handler.states)

    response = change(handler, bulb_id, True)

    assert response.status == 500
    assert response.payload is None
    assert handler.states == before
    assert mock_pin(20).state and mock_pin(21).state
    assert "Acceptable values are (1, 2, 3)" in caplog.text


@pytest.mark.parametrize("payload", [None, b"", b"{", b'{"id": 1}', b'{"id": 1, "state": "yes"}', b"[]"])
def test_undecodable_payload_returns_500(handler, payload, caplog):
    response = handler.dispatch(protocol.CHANGE_LIGHT_BULB_STATE, payload)
    assert response.status == 500
    assert response.payload is None
    assert handler.states == {1: False, 2: False, 3: False}
    assert "Invalid payload." in caplog.text


def test_bulb_two_on_then_off(handler, mock_pin):
    response = change(handler, 2, True)
    body = json.loads(response.payload)
    assert response.status == 200
    assert body["status"] == "Success"
    assert "bulb 2" in body["message"]
    assert "On" in body["message"]
    assert not mock_pin(20).state

    response = change(handler, 2, False)
    body = json.loads(response.payload)
    assert body == {"status": "Success", "message": "The light bulb 2 was turned Off"}
    assert mock_pin(20).state


def test_repeating_a_state_still_succeeds(handler):
    assert change(handler, 3, True).status == 200
    assert change(handler, 3, True).status == 200
    assert handler.states[3] is True


def test_environment_query_reads_sensor_once(handler, stub_sensor):
    response = handler.dispatch(protocol.GET_TEMPERATURE_AND_PREASSURE, None)
    assert response.status == 200
    assert json.loads(response.payload) == {"temperatureInFahrenheit": 72.5, "preassureInPascals": 101325}
    assert stub_sensor.reads == 1


def test_sensor_fault_propagates(bank, stub_sensor_factory):
    handler = RPCHandler(bank, stub_sensor_factory(fault=OSError("I2C bus error")))
    with pytest.raises(OSError):
        handler.dispatch(protocol.GET_TEMPERATURE_AND_PREASSURE, None)


def test_unknown_method_returns_501(handler):
    response = handler.dispatch("Reboot", None)
    assert response.status == 501
    assert response.payload is None
