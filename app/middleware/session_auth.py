"""
Session Identity Middleware.

Authentication happens upstream; the gateway forwards the authenticated
identity as headers:

    X-User-Id      acting user (required)
    X-Company-Id   company whose pooled account to use (optional)
    X-User-Role    customer (default) | fulfilment | support | admin | system

Staff tools act on a customer's account by sending that customer's
X-User-Id together with their own role.
"""
from functools import wraps
from flask import request, g, current_app

from ..utils.errors import unauthorized, forbidden

MAX_ID_LENGTH = 64

ROLE_CUSTOMER = 'customer'
ROLES = {ROLE_CUSTOMER, 'fulfilment', 'support', 'admin', 'system'}


def get_identity_from_request():
    """
    Read the acting user and company from the request.

    Returns:
        (user_id, company_id); either may be None
    """
    user_id = (request.headers.get('X-User-Id') or '').strip() or None
    company_id = (request.headers.get('X-Company-Id') or '').strip() or None
    return user_id, company_id


def get_role_from_request():
    """Caller role, lowercased; missing means customer, unknown means None."""
    role = (request.headers.get('X-User-Role') or '').strip().lower() or ROLE_CUSTOMER
    return role if role in ROLES else None


def require_session(f):
    """
    Decorator to require an authenticated identity on rewards endpoints.

    Sets g.user_id, g.company_id and g.role.

    Usage:
        @require_session
        def my_endpoint():
            rewards = RewardsService(g.user_id, g.company_id)
            ...
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user_id, company_id = get_identity_from_request()

        if not user_id:
            return unauthorized('X-User-Id header is required')

        if len(user_id) > MAX_ID_LENGTH or (company_id and len(company_id) > MAX_ID_LENGTH):
            return unauthorized('Invalid identity headers')

        role = get_role_from_request()
        if role is None:
            return unauthorized('Invalid X-User-Role header')

        g.user_id = user_id
        g.company_id = company_id
        g.role = role
        return f(*args, **kwargs)

    return decorated_function


def require_role(roles: list[str]):
    """
    Decorator to restrict an endpoint to the given roles.

    Must be used after @require_session.

    Usage:
        @require_session
        @require_role(['support', 'admin'])
        def my_support_endpoint():
            ...
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            role = getattr(g, 'role', None)

            if role not in roles:
                current_app.logger.warning(
                    f"User {getattr(g, 'user_id', None)} with role {role} denied {request.method} {request.path}"
                )
                return forbidden(f'This operation requires one of: {", ".join(roles)}')

            return f(*args, **kwargs)

        return decorated_function
    return decorator
