"""
Data Models for the payloads exchanged between Controller and Agent.

ActuatorState and EnvironmentReading are the two DTOs of the remote method
contract. Their JSON field names are part of the wire format and must not
change (including the 'preassure' spelling).
"""
from dataclasses import dataclass, field, asdict
import json
import time
from enum import Enum
from typing import Any, Dict, List, Optional

from pi_smart_home.errors import PayloadError


class SystemStatus(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"


def _load_json(raw: Any) -> Any:
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise PayloadError(f"Payload is not valid UTF-8: {e}") from e
    if not isinstance(raw, str):
        raise PayloadError(f"Unsupported payload type: {type(raw).__name__}")
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise PayloadError(f"Payload is not valid JSON: {e}") from e


def _lookup(data: Dict[str, Any], key: str) -> Any:
    """Case-insensitive key lookup, so 'Id' and 'id' both decode."""
    for name, value in data.items():
        if isinstance(name, str) and name.lower() == key.lower():
            return value
    raise PayloadError(f"Missing field '{key}'")


# --- Base Class ---

@dataclass(frozen=True)
class BasePayload:
    """Base class for all JSON payloads sent over MQTT."""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_json(self) -> str:
        """Converts the object to a JSON string."""
        return json.dumps(self.to_dict())

    def to_bytes(self) -> bytes:
        """Converts the object to UTF-8 encoded bytes for MQTT."""
        return self.to_json().encode('utf-8')


# --- Remote method DTOs ---

@dataclass(frozen=True)
class ActuatorState(BasePayload):
    """The on/off state of one light bulb."""
    id: int
    state: bool

    @classmethod
    def from_dict(cls, data: Any) -> "ActuatorState":
        if not isinstance(data, dict):
            raise PayloadError(f"Expected a JSON object, got {type(data).__name__}")
        bulb_id = _lookup(data, "id")
        state = _lookup(data, "state")
        # bool is a subclass of int, so reject it explicitly
        if isinstance(bulb_id, bool) or not isinstance(bulb_id, int):
            raise PayloadError(f"Field 'id' must be an integer, got {bulb_id!r}")
        if not isinstance(state, bool):
            raise PayloadError(f"Field 'state' must be a boolean, got {state!r}")
        return cls(id=bulb_id, state=state)

    @classmethod
    def from_json(cls, raw) -> "ActuatorState":
        return cls.from_dict(_load_json(raw))

    @classmethod
    def list_from_json(cls, raw) -> List["ActuatorState"]:
        data = _load_json(raw)
        if not isinstance(data, list):
            raise PayloadError(f"Expected a JSON array, got {type(data).__name__}")
        return [cls.from_dict(item) for item in data]


@dataclass(frozen=True)
class EnvironmentReading(BasePayload):
    """A single temperature/pressure sample from the BME280."""
    temperature_f: float
    pressure_pa: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "temperatureInFahrenheit": self.temperature_f,
            "preassureInPascals": self.pressure_pa,
        }

    @classmethod
    def from_json(cls, raw) -> "EnvironmentReading":
        data = _load_json(raw)
        if not isinstance(data, dict):
            raise PayloadError(f"Expected a JSON object, got {type(data).__name__}")
        temperature = _lookup(data, "temperatureInFahrenheit")
        pressure = _lookup(data, "preassureInPascals")
        for name, value in (("temperatureInFahrenheit", temperature), ("preassureInPascals", pressure)):
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise PayloadError(f"Field '{name}' must be a number, got {value!r}")
        return cls(temperature_f=float(temperature), pressure_pa=float(pressure))


@dataclass(frozen=True)
class CommandResult(BasePayload):
    """Body returned by a successful change command."""
    status: str
    message: str

    @classmethod
    def success(cls, message: str) -> "CommandResult":
        return cls(status="Success", message=message)


# --- Envelopes ---

@dataclass(frozen=True)
class MethodResponse:
    """
    Status code plus optional body of a remote method call.
    This is what every handler returns and what the controller receives.
    """
    status: int
    payload: Optional[bytes] = None

    @property
    def ok(self) -> bool:
        return self.status == 200

    @classmethod
    def from_payload(cls, payload: BasePayload, status: int = 200) -> "MethodResponse":
        return cls(status=status, payload=payload.to_bytes())


@dataclass(frozen=True, kw_only=True)
class SystemStatusPayload(BasePayload):
    """Presence message published on the device status topic."""
    status: SystemStatus = field(default=SystemStatus.ONLINE)
    timestamp: float = field(default_factory=time.time)
