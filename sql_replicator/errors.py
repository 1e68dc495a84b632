class ReplicationError(Exception):
    retryable = False


class MalformedEvent(ReplicationError):
    """The record cannot be applied and retrying will never fix it."""


class SinkError(ReplicationError):
    pass


class TransientSinkError(SinkError):
    """Connection reset, timeout or cold start; redelivery may succeed."""
    retryable = True


class ConstraintViolation(SinkError):
    """Any database error other than the expected conflict on the key."""


class CredentialResolutionError(ReplicationError):
    retryable = True


class BatchProcessingError(ReplicationError):
    """Fails the whole invocation so the event source redelivers the batch."""
    retryable = True
