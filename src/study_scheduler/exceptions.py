"""
Error taxonomy for the scheduling engine
"""


class SchedulerError(Exception):
    """Base exception for scheduling-layer errors"""

    def __init__(self, message: str, error_code: str | None = None):
        self.message = message
        self.error_code = error_code
        super().__init__(self.message)


class ValidationError(SchedulerError):
    """Raised when a request is rejected before the pipeline runs"""

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message, "VALIDATION_ERROR")


class CapacityExhausted(SchedulerError):
    """Raised when there are more work items than usable slots"""

    def __init__(self, requested: int, available: int):
        self.requested = requested
        self.available = available
        message = f"{requested} work items requested but only {available} slots available"
        super().__init__(message, "CAPACITY_EXHAUSTED")


class AdvisoryServiceError(SchedulerError):
    """Raised when the advisory service fails, times out or returns a bad reply"""

    def __init__(self, message: str, service_name: str = "advisory"):
        self.service_name = service_name
        full_message = f"{service_name} service error: {message}"
        super().__init__(full_message, "ADVISORY_SERVICE_ERROR")


class PersistenceError(SchedulerError):
    """Raised when the schedule store cannot be read or written"""

    def __init__(self, operation: str, message: str):
        self.operation = operation
        super().__init__(f"{operation} failed: {message}", "PERSISTENCE_ERROR")


class PipelineFailure(SchedulerError):
    """Raised when a pipeline tier cannot produce a schedule"""

    def __init__(self, tier: str, message: str):
        self.tier = tier
        super().__init__(f"{tier} tier failed: {message}", "PIPELINE_FAILURE")


class SlotReservationError(SchedulerError):
    """Raised when a slot that is already owned is reserved again"""

    def __init__(self, slot_id: str, owner: str | None = None):
        self.slot_id = slot_id
        self.owner = owner
        message = f"Slot {slot_id} is already reserved"
        if owner:
            message += f" by {owner}"
        super().__init__(message, "SLOT_RESERVED")
