"""
sunpoll services

- Device Service - Modbus polling, decoding and the read-only HTTP surface
"""
