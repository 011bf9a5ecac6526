"""
Error taxonomy shared by the scoring and distribution services.

Each error carries the HTTP status the route layer renders it with, so
services raise domain errors and never build responses themselves.
"""


class LeadHubError(Exception):
    """Base class for all domain errors."""
    status_code = 500
    code = 'internal_error'

    def __init__(self, reason=''):
        self.reason = reason or self.__class__.__name__
        super().__init__(self.reason)

    def to_dict(self):
        return {'error': self.code, 'reason': self.reason}


class ValidationError(LeadHubError):
    """Malformed configuration or payload. Never persisted."""
    status_code = 400
    code = 'validation_error'


class NotFoundError(LeadHubError):
    """Entity missing or owned by another tenant. Both cases share one message."""
    status_code = 404
    code = 'not_found'

    def __init__(self, entity, entity_id=None):
        self.entity = entity
        self.entity_id = entity_id
        reason = f'{entity} not found' if entity_id is None else f'{entity} {entity_id} not found'
        super().__init__(reason)


class CapacityExhausted(LeadHubError):
    """No eligible distribution member. Soft: callers continue unassigned."""
    status_code = 409
    code = 'capacity_exhausted'

    def __init__(self, webhook_id):
        self.webhook_id = webhook_id
        super().__init__(f'no eligible distribution member for webhook {webhook_id}')


class TransientStoreError(LeadHubError):
    """Database timeout or connection failure."""
    status_code = 503
    code = 'store_unavailable'
