"""
switchsync - keeps SwitchBot Bots and Contact sensors in sync over cloud or BLE.
"""

__version__ = "0.1.0"
