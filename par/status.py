from __future__ import annotations

from .models import Condition, PlatformAdminStatus, utc_now

CONFIGMAP_AVAILABLE = "ConfigmapAvailable"
COMPONENT_AVAILABLE = "ComponentAvailable"

CONFIGMAP_PROVISIONING = "ConfigmapProvisioning"
CONFIGMAP_PROVISIONING_FAILED = "ConfigmapProvisioningFailed"
COMPONENT_PROVISIONING = "ComponentProvisioning"
COMPONENT_PROVISIONING_FAILED = "ComponentProvisioningFailed"


def new_condition(type_: str, status: bool, reason: str = "", message: str = "") -> Condition:
    return Condition(type=type_, status=status, reason=reason, message=message, last_transition_time=utc_now())


def get_condition(status: PlatformAdminStatus, type_: str) -> Condition | None:
    for c in status.conditions:
        if c.type == type_:
            return c
    return None


def set_condition(status: PlatformAdminStatus, cond: Condition) -> None:
    """Replace the condition of the same type.

    The transition time is kept when the status value did not flip, so a
    pass that changes nothing leaves the conditions untouched.
    """
    current = get_condition(status, cond.type)
    if current is not None and current.status == cond.status and current.reason == cond.reason and current.message == cond.message:
        return
    if current is None:
        status.conditions.append(cond)
        return
    if current.status == cond.status:
        cond.last_transition_time = current.last_transition_time
    status.conditions = [cond if c.type == cond.type else c for c in status.conditions]


def set_component_counts(status: PlatformAdminStatus, ready: int, total: int) -> None:
    status.ready_component_num = ready
    status.unready_component_num = total - ready


def aggregate_ready(status: PlatformAdminStatus) -> bool:
    """Ready only when both availability conditions are true."""
    for type_ in (CONFIGMAP_AVAILABLE, COMPONENT_AVAILABLE):
        c = get_condition(status, type_)
        if c is None or not c.status:
            return False
    return True
