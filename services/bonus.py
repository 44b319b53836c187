from __future__ import annotations

import logging

from services.broadcast import EventChannel

log = logging.getLogger(__name__)

APPLICATION_COMPLETED = "APPLICATION_COMPLETED"
APPLICATION_ONBOARDING = "APPLICATION_ONBOARDING"
APPLICATION_REJECTED = "APPLICATION_REJECTED"

_DESCRIPTIONS = {
    APPLICATION_COMPLETED: "Processed application of {name}",
    APPLICATION_ONBOARDING: "Ran onboarding for {name}",
    APPLICATION_REJECTED: "Processed application of {name} (rejected)",
}

bonus_events = EventChannel("bonus")


def trigger(activity_type: str, processed_by_employee_id: str, applicant_name: str, application_id: str) -> bool:
    """Publishes a bonus activity for the operator. Returns False when nothing was sent."""
    if not processed_by_employee_id:
        log.info("bonus %s skipped for %s: operator has no employee record", activity_type, application_id)
        return False
    payload = {
        "activityType": activity_type,
        "employeeId": processed_by_employee_id,
        "description": _DESCRIPTIONS.get(activity_type, "{name}").format(name=applicant_name),
        "referenceId": application_id,
        "referenceType": "Application",
    }
    bonus_events.emit(activity_type, payload)
    return True
