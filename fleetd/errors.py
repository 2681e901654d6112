"""Errors returned by configuration pushes.

Every failure of :func:`fleetd.delivery.ConfigDelivery.push_config` is a
:class:`ConfigPushError`.  The ``kind`` attribute names the failed check so
callers (e.g. the REST layer) can map it without string matching.
"""

from __future__ import annotations


class ConfigPushError(Exception):
    """Base class for recoverable push failures."""

    kind = "ConfigPushError"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class DeviceNotFound(ConfigPushError):
    kind = "DeviceNotFound"

    def __init__(self, device_id: str) -> None:
        self.device_id = device_id
        super().__init__(f"device {device_id} not found")


class DeviceUnreachable(ConfigPushError):
    kind = "DeviceUnreachable"

    def __init__(self, device_id: str) -> None:
        self.device_id = device_id
        super().__init__(f"device {device_id} is not connected")


class SupervisorNotFound(ConfigPushError):
    """The device points at a supervisor the registry does not know."""

    kind = "SupervisorNotFound"

    def __init__(self, supervisor_id: str, device_id: str) -> None:
        self.supervisor_id = supervisor_id
        self.device_id = device_id
        super().__init__(f"supervisor {supervisor_id} not found for device {device_id}")


class SupervisorUnreachable(ConfigPushError):
    kind = "SupervisorUnreachable"

    def __init__(self, supervisor_id: str) -> None:
        self.supervisor_id = supervisor_id
        super().__init__(f"supervisor {supervisor_id} is not connected")


class InvalidIdentity(ConfigPushError):
    """An identity cannot be converted to its binary instance-uid form."""

    kind = "InvalidIdentity"

    def __init__(self, identity: str, reason: str = "") -> None:
        self.identity = identity
        detail = f"invalid identity {identity!r}"
        if reason:
            detail += f": {reason}"
        super().__init__(detail)


class DeliveryFailed(ConfigPushError):
    """The transport failed to send; the cause is chained as ``__cause__``."""

    kind = "DeliveryFailed"

    def __init__(self, device_id: str, supervisor_id: str, cause: BaseException) -> None:
        self.device_id = device_id
        self.supervisor_id = supervisor_id
        super().__init__(f"failed to send config: {cause}")
