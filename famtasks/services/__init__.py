from famtasks.services import (
    activity_service,
    analytics_service,
    state_machine,
)


__all__ = [
    "activity_service",
    "analytics_service",
    "state_machine",
]
