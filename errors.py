# errors.py


class TicketingError(Exception):
    """Base class for failures that end a request with a client-facing message."""
    category = 'error'
    status_code = 400

    def __init__(self, message):
        super().__init__(message)
        self.message = message

    def to_dict(self):
        return {'status': 'error', 'category': self.category, 'message': self.message}


class ValidationError(TicketingError):
    category = 'validation'
    status_code = 400


class NotFound(TicketingError):
    category = 'not_found'
    status_code = 404


class CapacityExceeded(TicketingError):
    """Raised when an event has no tickets left to sell."""
    category = 'capacity_exceeded'
    status_code = 409


class InvalidTransition(TicketingError):
    """Raised when a ticket is asked to move to a state it cannot reach."""
    category = 'invalid_transition'
    status_code = 409


class ConflictAlreadyUsed(TicketingError):
    category = 'already_used'
    status_code = 409

    def __init__(self, message, used_at=None):
        super().__init__(message)
        self.used_at = used_at

    def to_dict(self):
        data = super().to_dict()
        data['used_at'] = self.used_at.isoformat() if self.used_at else None
        return data


class UpstreamFailure(TicketingError):
    """Raised when the payment provider cannot be reached or refuses a call."""
    category = 'upstream_failure'
    status_code = 502


class EmailDeliveryError(UpstreamFailure):
    pass


class WebhookSignatureError(TicketingError):
    category = 'tamper_detected'
    status_code = 401


class ConfigurationError(Exception):
    """Fatal misconfiguration detected while building the application."""
