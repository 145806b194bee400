"""
Error taxonomy for event orchestration and device transport.

``EventError`` subclasses are rejected synchronously by the orchestration
service and carry the HTTP status routers answer with.  ``TransportError``
subclasses never fail an API call; they are logged and returned as warnings.
"""


class EventError(Exception):
    status_code = 400
    code = "event_error"

    def __init__(self, message: str = None):
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = str(self)


# Lookup

class NotFound(EventError):
    """Event not found"""
    status_code = 404
    code = "not_found"


class DeviceNotOwned(EventError):
    """Device is not within the caller's tenancy scope"""
    status_code = 403
    code = "device_not_owned"


class UnknownActor(EventError):
    """Caller could not be resolved"""
    status_code = 401
    code = "unknown_actor"


# Validation

class ValidationError(EventError):
    """Invalid event data"""
    status_code = 422
    code = "validation_error"


class InvalidInterval(ValidationError):
    """End time must be after start time"""
    code = "invalid_interval"


class InvalidTemperature(ValidationError):
    """Temperature is out of range"""
    code = "invalid_temperature"


class InvalidRecurrence(ValidationError):
    """Invalid recurrence descriptor"""
    code = "invalid_recurrence"


class NoValidOccurrence(ValidationError):
    """No occurrence of the recurring schedule falls inside its date range"""
    code = "no_valid_occurrence"


class InvalidTimeFormat(ValidationError):
    """Time must use HH:MM or HH:MM:SS"""
    code = "invalid_time_format"


# Conflict

class ConflictError(EventError):
    status_code = 409
    code = "conflict"


class DuplicateTenantEvent(ConflictError):
    """Another tenant event already occupies this device in the requested window"""
    code = "duplicate_tenant_event"


class DuplicateSubTenantEvent(ConflictError):
    """Another sub-tenant event already occupies this device in the requested window"""
    code = "duplicate_sub_tenant_event"


class TenantPriorityConflict(ConflictError):
    """A tenant event takes precedence on this device in the requested window"""
    code = "tenant_priority_conflict"


# State

class StateError(EventError):
    status_code = 409
    code = "invalid_state"


class AlreadyActive(StateError):
    """Event is already active"""
    code = "already_active"


class NotActive(StateError):
    """Event is not active"""
    code = "not_active"


class EventDisabled(StateError):
    """Event is disabled"""
    code = "event_disabled"


class AlreadyDisabled(StateError):
    """Event is already disabled"""
    code = "already_disabled"


class NotDisabled(StateError):
    """Event is not disabled"""
    code = "not_disabled"


class CannotModifyActive(StateError):
    """Active events cannot be modified or deleted"""
    code = "cannot_modify_active"


class InvalidTerminalTransition(StateError):
    """Event has already finished"""
    code = "invalid_terminal_transition"


class TemplateNotRunnable(StateError):
    """Recurring templates are never run directly"""
    code = "template_not_runnable"


# Transport

class TransportError(Exception):
    pass


class DeviceNotConnected(TransportError):
    def __init__(self, serial_number: str):
        super().__init__(f"Device {serial_number} is not connected")
        self.serial_number = serial_number


class DeviceCommandFailed(TransportError):
    pass
