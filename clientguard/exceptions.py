"""Error taxonomy for the security core"""
from typing import Dict, List


class SecurityCoreError(Exception):
    """Base exception for the security core"""
    pass


class ConfigurationError(SecurityCoreError):
    """Raised when a security setting is rejected outright (e.g. iterations below floor)"""
    pass


class ValidationError(SecurityCoreError):
    """Field-keyed validation failure

    ``errors`` maps every violated field to its list of messages so callers
    can render exactly which fields failed.
    """

    def __init__(self, errors: Dict[str, List[str]]):
        self.errors = {field: list(messages) for field, messages in errors.items()}
        super().__init__('; '.join(
            f'{field}: {" ".join(messages)}' for field, messages in self.errors.items()
        ))

    @classmethod
    def single(cls, field: str, message: str) -> 'ValidationError':
        return cls({field: [message]})

    def to_dict(self) -> Dict[str, List[str]]:
        return {field: list(messages) for field, messages in self.errors.items()}


class AuditWriteError(SecurityCoreError):
    """Raised when an audit event could not be persisted

    The triggering operation is rolled back with it and must not be reported
    as completed.
    """

    def __init__(self, event_type: str, original: Exception = None):
        self.event_type = event_type
        self.original = original
        super().__init__(f'Failed to record audit event {event_type!r}')
