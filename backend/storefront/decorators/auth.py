from functools import wraps
from flask_jwt_extended import verify_jwt_in_request
from storefront.services.policy import authorize


def require_permission(resource: str, action: str):
    """Bearer token required; the gate's decision (with merged conditions) lands on ``g.permission``."""
    def outer(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            verify_jwt_in_request()
            authorize(resource, action)
            return fn(*args, **kwargs)
        return wrapper
    return outer
