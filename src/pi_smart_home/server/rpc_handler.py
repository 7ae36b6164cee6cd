"""
Remote Method Dispatch and Light Bulb State.

This module is responsible for:
- Binding the three remote method names to local handlers, once.
- Holding the last known on/off state of every configured bulb.
- Validating change commands and driving the outputs.
- Reading the environment sensor on request.

Every handler has the same contract: payload bytes (or None) in, a
`MethodResponse` out. Validation failures become a 500 response with no
body; they never raise. Sensor faults are not validation failures and
propagate to the caller.
"""
import json
import logging
from typing import Callable, Dict, Iterable, Optional, Protocol, Tuple

from pi_smart_home import protocol
from pi_smart_home.errors import ConfigurationError, HandlerRegistrationError, PayloadError, UnknownActuatorError
from pi_smart_home.models import ActuatorState, CommandResult, EnvironmentReading, MethodResponse

# Bulbs reported by GetLightBulbStatus. Bulb 2 has never been part of the
# status report; kept as-is until the product owner says otherwise.
DEFAULT_REPORTED_BULBS: Tuple[int, ...] = (1, 3)

MethodHandler = Callable[[Optional[bytes]], MethodResponse]

logger = logging.getLogger(__name__)


class LightBulbOutputs(Protocol):
    @property
    def bulb_ids(self) -> Iterable[int]: ...

    def drive(self, bulb_id: int, on: bool) -> None: ...


class TemperatureSensor(Protocol):
    def read(self) -> Tuple[float, float]: ...


class RPCHandler:
    """
    Dispatch table from remote method name to handler, plus the bulb state.
    """
    handlers: Dict[str, MethodHandler]
    states: Dict[int, bool]
    reported_bulbs: Tuple[int, ...]

    def __init__(self, bulbs: LightBulbOutputs, sensor: TemperatureSensor,
                 reported_bulbs: Iterable[int] = DEFAULT_REPORTED_BULBS):
        self.bulbs = bulbs
        self.sensor = sensor
        self.states = {bulb_id: False for bulb_id in bulbs.bulb_ids}

        if isinstance(reported_bulbs, (str, bytes, dict)):
            raise ConfigurationError(f"'reported_bulbs' must be a list of bulb ids, got {reported_bulbs!r}")
        try:
            self.reported_bulbs = tuple(int(bulb_id) for bulb_id in reported_bulbs)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"'reported_bulbs' must be a list of bulb ids, got {reported_bulbs!r}") from e
        unknown = [bulb_id for bulb_id in self.reported_bulbs if bulb_id not in self.states]
        if unknown:
            raise ConfigurationError(f"Reported bulbs {unknown} are not configured")

        self.handlers = {}
        self.register(protocol.CHANGE_LIGHT_BULB_STATE, self.change_light_bulb_state)
        self.register(protocol.GET_LIGHT_BULB_STATUS, self.get_light_bulb_status)
        self.register(protocol.GET_TEMPERATURE_AND_PREASSURE, self.get_temperature_and_preassure)

    def register(self, method: str, handler: MethodHandler):
        if not method or not isinstance(method, str):
            raise HandlerRegistrationError(f"Invalid method name: {method!r}")
        if not callable(handler):
            raise HandlerRegistrationError(f"Handler for '{method}' is not callable")
        if method in self.handlers:
            raise HandlerRegistrationError(f"A handler for '{method}' is already registered")
        self.handlers[method] = handler
        logger.debug(f"Registered handler for '{method}'")

    def dispatch(self, method: str, payload: Optional[bytes]) -> MethodResponse:
        """Runs the handler bound to `method`. Unknown methods answer 501."""
        handler = self.handlers.get(method)
        if handler is None:
            logger.error(f"No handler registered for method '{method}'.")
            return MethodResponse(status=protocol.STATUS_NOT_IMPLEMENTED)
        return handler(payload)

    def change_light_bulb_state(self, payload: Optional[bytes]) -> MethodResponse:
        try:
            request = ActuatorState.from_json(payload if payload is not None else b"")
        except PayloadError as e:
            logger.error(f"Invalid payload. {e}")
            return MethodResponse(status=protocol.STATUS_ERROR)

        if request.id not in self.states:
            logger.error(str(UnknownActuatorError(request.id, self.states)))
            return MethodResponse(status=protocol.STATUS_ERROR)

        state = "On" if request.state else "Off"
        logger.info(f"Setting the bulb with id {request.id} to {state}")
        self.bulbs.drive(request.id, request.state)
        self.states[request.id] = request.state

        result = CommandResult.success(f"The light bulb {request.id} was turned {state}")
        return MethodResponse.from_payload(result)

    def get_light_bulb_status(self, payload: Optional[bytes] = None) -> MethodResponse:
        logger.info("Getting a request from the controller for Light Status.")
        result = [ActuatorState(id=bulb_id, state=self.states[bulb_id]) for bulb_id in self.reported_bulbs]
        body = json.dumps([item.to_dict() for item in result])
        return MethodResponse(status=protocol.STATUS_OK, payload=body.encode("utf-8"))

    def get_temperature_and_preassure(self, payload: Optional[bytes] = None) -> MethodResponse:
        logger.info("Getting a request from the controller for temperature and preassure info.")
        temperature_f, pressure_pa = self.sensor.read()
        logger.info(f"Temperature in degrees Fahrenheit: {temperature_f}")
        logger.info(f"Preassure in Pascals:              {pressure_pa}")
        reading = EnvironmentReading(temperature_f=temperature_f, pressure_pa=pressure_pa)
        return MethodResponse.from_payload(reading)
