"""
Remote Device Stubs.

`gpiozero`-like classes that let a remote Python application talk to the
Pi's light bulbs and sensor as if they were local devices. Every call is
one remote method invocation through a `HubController`.
"""
from pi_smart_home.client.controller import HubController
from pi_smart_home.errors import UnknownActuatorError
from pi_smart_home.models import EnvironmentReading


class RemoteLightBulb:
    def __init__(self, controller: HubController, bulb_id: int):
        self.controller = controller
        self.bulb_id = bulb_id

    def __repr__(self):
        return f"<RemoteLightBulb {self.bulb_id} on {self.controller.device_id}>"

    async def on(self):
        await self.controller.set_actuator_state(self.bulb_id, True)

    async def off(self):
        await self.controller.set_actuator_state(self.bulb_id, False)

    async def is_lit(self) -> bool:
        """
        Reads the state from the device's status report.
        Bulbs missing from the report raise UnknownActuatorError.
        """
        for state in await self.controller.get_actuator_states():
            if state.id == self.bulb_id:
                return state.state
        raise UnknownActuatorError(self.bulb_id)

    async def toggle(self):
        await self.controller.set_actuator_state(self.bulb_id, not await self.is_lit())


class RemoteEnvironmentSensor:
    def __init__(self, controller: HubController):
        self.controller = controller

    async def read(self) -> EnvironmentReading:
        return await self.controller.get_environment_reading()

    async def temperature(self) -> float:
        """Degrees Fahrenheit."""
        return (await self.read()).temperature_f

    async def pressure(self) -> float:
        """Pascals."""
        return (await self.read()).pressure_pa
