"""Device synchronization for SwitchBot Bots and Contact sensors.

Each device keeps an in-memory mirror of its state consistent with the real
device over either the SwitchBot cloud API or a direct BLE link, coalescing
bursts of user intents into as few outbound commands as possible.
"""
