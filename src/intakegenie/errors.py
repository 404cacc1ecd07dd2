class IntakeError(Exception):
    """Base class for intake pipeline errors."""


class LLMError(IntakeError):
    """The completion call failed or returned output that is not usable."""


class TranscriptUnavailable(IntakeError):
    """No recording or transcript exists (yet) for the call."""


class EmailDeliveryError(IntakeError):
    """The notification email could not be delivered."""


class FinalizeError(IntakeError):
    """The post-call pipeline could not bring the call to a terminal state."""


class InvalidTransition(IntakeError):
    """A call status change that the status table does not allow."""

    def __init__(self, call_id: str, current, target):
        self.call_id = call_id
        self.current = current
        self.target = target
        super().__init__(f"call {call_id}: {current.value} -> {target.value} not allowed")
