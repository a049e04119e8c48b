"""
Middleware package for the rewards ledger.
"""
from .session_auth import require_session, require_role, get_identity_from_request, get_role_from_request
