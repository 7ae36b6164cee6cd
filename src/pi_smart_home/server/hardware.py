"""
Light Bulb Outputs.

This module contains the `LightBulbBank` class, which owns the gpiozero
output lines that drive the relay board. It is responsible for:
- Resolving bulb ids to BCM pins from configuration.
- Opening every line in output mode with the bulbs switched off.
- Driving a single line for a change command.
- Releasing every line on close.

The relay board is active-low: a low line energises the relay and lights
the bulb, so the level written is always the inverse of the requested state.
"""
import logging as log
from typing import Dict, Iterable, Optional

# On a Pi this uses the lgpio pin factory; tests swap in gpiozero's MockFactory.
from gpiozero import DigitalOutputDevice

from pi_smart_home.errors import ConfigurationError, UnknownActuatorError

# Bulb id -> BCM pin of the relay channel
DEFAULT_BULB_PINS: Dict[int, int] = {1: 26, 2: 20, 3: 21}

logger = log.getLogger(__name__)


def bulb_pins_from_config(config: dict) -> Dict[int, int]:
    """Reads the `bulbs` mapping, falling back to the default wiring."""
    raw = config.get("bulbs")
    if not raw:
        return dict(DEFAULT_BULB_PINS)
    if not isinstance(raw, dict):
        raise ConfigurationError(f"'bulbs' must map bulb ids to pins, got {raw!r}")
    try:
        pins = {int(bulb_id): int(pin) for bulb_id, pin in raw.items()}
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid 'bulbs' entry: {e}") from e
    if len(set(pins.values())) != len(pins):
        raise ConfigurationError(f"Two bulbs share a pin: {pins}")
    return pins


class LightBulbBank:
    pins: Dict[int, int]
    lines: Optional[Dict[int, DigitalOutputDevice]]

    """
    Owns one output line per configured light bulb.
    """
    def __init__(self, pins: Dict[int, int]):
        self.pins = dict(pins)
        self.lines = {}
        try:
            for bulb_id, pin in self.pins.items():
                # Physical high level keeps the active-low relay open: bulb off.
                self.lines[bulb_id] = DigitalOutputDevice(pin, active_high=True, initial_value=True)
                logger.info(f"Initialized light bulb {bulb_id} on Pin {pin}")
        except Exception:
            self.close()
            raise

    @property
    def bulb_ids(self) -> Iterable[int]:
        return tuple(self.pins)

    def drive(self, bulb_id: int, on: bool):
        """
        Switches one bulb. Writes the inverse of `on` to the line.
        Unknown ids raise before any line is touched.
        """
        if self.lines is None:
            raise RuntimeError("Light bulb outputs are closed")
        line = self.lines.get(bulb_id)
        if line is None:
            raise UnknownActuatorError(bulb_id, self.pins)
        line.value = not on
        logger.debug(f"Pin {self.pins[bulb_id]} driven {'low' if on else 'high'} for bulb {bulb_id}")

    def close(self):
        """Closes every line. Safe to call more than once."""
        if self.lines is None:
            return
        lines, self.lines = self.lines, None
        for bulb_id, line in lines.items():
            try:
                line.close()
            except Exception as e:
                logger.error(f"Failed to release line of bulb {bulb_id}: {e}")
        logger.info("Light bulb outputs released.")
