"""
sunpoll - Modbus TCP poller for SUN2000 inverters with attached meter and battery units
"""

__version__ = "1.0.0"
