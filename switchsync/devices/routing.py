"""Transport selection.

Decides whether a device is reached over the direct BLE link or through the
SwitchBot cloud. The decision is a pure membership test against the
configured ``options.ble`` list; it is re-evaluated on every call rather than
cached, the configuration being constant for the lifetime of the process.
"""

from __future__ import annotations

from collections.abc import Collection

from switchsync.devices.models import Transport


def select_transport(device_id: str, local_ids: Collection[str]) -> Transport:
    """Return ``Transport.LOCAL`` when *device_id* is in *local_ids*.

    Parameters
    ----------
    device_id:
        Cloud device identifier (e.g. ``1A23B456789A``).
    local_ids:
        Identifiers forced onto the BLE link.
    """
    if device_id in local_ids:
        return Transport.LOCAL
    return Transport.REMOTE
