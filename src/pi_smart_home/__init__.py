"""
pi_smart_home

Remote control of a Raspberry Pi's light bulbs and BME280 sensor over
MQTT v5 request/response: a device-side agent (`server`) and a
cloud-side controller (`client`).
"""
__version__ = "0.1.0"
