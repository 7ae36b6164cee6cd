"""
Device-side components that run on the Raspberry Pi.
The `DeviceAgent` binds the remote methods to the light bulb outputs and
the BME280 sensor and serves them over MQTT v5.
"""
