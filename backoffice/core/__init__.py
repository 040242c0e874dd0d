from backoffice.core.event_bus import (
    DomainEvent,
    EventBus,
    RfqCreated,
    RfqUpdated,
    TaskAssigned,
    TaskSubmitted,
    TenderCreated,
)

__all__ = [
    "DomainEvent",
    "EventBus",
    "TenderCreated",
    "TaskAssigned",
    "TaskSubmitted",
    "RfqCreated",
    "RfqUpdated",
]
