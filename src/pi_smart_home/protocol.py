"""
MQTT v5 Request/Response conventions shared by Controller and Agent.

Request:  {prefix}/{device_id}/methods/{method}
          ResponseTopic + CorrelationData set by the caller.
Response: published on the caller's ResponseTopic, echoing CorrelationData,
          with the method status code in the 'status' user property.
"""
from typing import Optional

from paho.mqtt.packettypes import PacketTypes
from paho.mqtt.properties import Properties

# Remote method names. Case-sensitive, fixed by the device contract.
CHANGE_LIGHT_BULB_STATE = "ChangeLightBulbState"
GET_LIGHT_BULB_STATUS = "GetLightBulbStatus"
GET_TEMPERATURE_AND_PREASSURE = "GetTemperatureAndPreassure"

METHOD_NAMES = (CHANGE_LIGHT_BULB_STATE, GET_LIGHT_BULB_STATUS, GET_TEMPERATURE_AND_PREASSURE)

DEFAULT_TOPIC_PREFIX = "devices"
DEFAULT_RESPONSE_PREFIX = "controllers"
DEFAULT_DEVICE_ID = "MyRaspberryPi"
DEFAULT_RESPONSE_TIMEOUT = 30.0

STATUS_PROPERTY = "status"

STATUS_OK = 200
STATUS_ERROR = 500
STATUS_NOT_IMPLEMENTED = 501


def method_topic(device_id: str, method: str, prefix: str = DEFAULT_TOPIC_PREFIX) -> str:
    return f"{prefix}/{device_id}/methods/{method}"


def method_subscription(device_id: str, prefix: str = DEFAULT_TOPIC_PREFIX) -> str:
    return f"{prefix}/{device_id}/methods/+"


def method_from_topic(topic: str) -> str:
    """Returns the last topic level, which is the method name."""
    return topic.rsplit("/", 1)[-1]


def status_topic(device_id: str, prefix: str = DEFAULT_TOPIC_PREFIX) -> str:
    return f"{prefix}/{device_id}/status"


def response_topic(client_id: str, prefix: str = DEFAULT_RESPONSE_PREFIX) -> str:
    return f"{prefix}/{client_id}/responses"


def request_properties(reply_to: str, correlation_data: bytes) -> Properties:
    properties = Properties(PacketTypes.PUBLISH)
    properties.ResponseTopic = reply_to
    properties.CorrelationData = correlation_data
    return properties


def response_properties(status: int, correlation_data: Optional[bytes]) -> Properties:
    properties = Properties(PacketTypes.PUBLISH)
    if correlation_data:
        properties.CorrelationData = correlation_data
    properties.UserProperty = [(STATUS_PROPERTY, str(status))]
    return properties


def get_response_topic(properties: Optional[Properties]) -> Optional[str]:
    return getattr(properties, "ResponseTopic", None) if properties is not None else None


def get_correlation_data(properties: Optional[Properties]) -> Optional[bytes]:
    return getattr(properties, "CorrelationData", None) if properties is not None else None


def get_status(properties: Optional[Properties]) -> Optional[int]:
    """
    Reads the status code from the user properties.
    Returns None if it is missing or not an integer.
    """
    user_properties = getattr(properties, "UserProperty", None) if properties is not None else None
    for key, value in user_properties or []:
        if key == STATUS_PROPERTY:
            try:
                return int(value)
            except (TypeError, ValueError):
                return None
    return None
