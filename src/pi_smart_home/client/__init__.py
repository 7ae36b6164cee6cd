"""
Client-side components for remote Python applications.
This package provides the `HubController` proxy and `gpiozero`-like stubs
that translate calls into MQTT v5 RPC requests to the Pi.
"""
from pi_smart_home.client.controller import HubController
from pi_smart_home.client.devices import RemoteEnvironmentSensor, RemoteLightBulb

__all__ = ["HubController", "RemoteEnvironmentSensor", "RemoteLightBulb"]
