"""
Request helpers shared by the API blueprints: tenant resolution, body parsing.
"""
from flask import g, request

from leadhub.config import ORGANIZATION_HEADER, USER_HEADER
from leadhub.errors import NotFoundError, ValidationError
from leadhub.models.organization import Organization
from leadhub.services.store import retrying_read


def db_session():
    """New session per request; imported late so tests can swap get_session."""
    from leadhub.database import get_session
    return get_session()


@retrying_read
def _load_organization(session, org_id):
    return session.get(Organization, org_id)


def current_organization_id(session) -> str:
    """Tenant of the request, from the organization header; must exist."""
    org_id = (request.headers.get(ORGANIZATION_HEADER) or '').strip()
    if not org_id:
        raise ValidationError(f'{ORGANIZATION_HEADER} header is required')
    if _load_organization(session, org_id) is None:
        raise NotFoundError('organization', org_id)
    g.organization_id = org_id
    return org_id


def current_user_id():
    return (request.headers.get(USER_HEADER) or '').strip() or None


def current_actor() -> str:
    user_id = current_user_id()
    return f'user:{user_id}' if user_id else 'api'


def json_body() -> dict:
    body = request.get_json(silent=True)
    if body is None:
        return {}
    if not isinstance(body, dict):
        raise ValidationError('request body must be a JSON object')
    return body


def bool_arg(value, name) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    if isinstance(value, str) and value.lower() in ('1', 'true', 'yes'):
        return True
    if isinstance(value, str) and value.lower() in ('0', 'false', 'no', ''):
        return False
    raise ValidationError(f'{name} must be a boolean')
