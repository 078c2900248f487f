"""Admin token check for mutating endpoints."""

import secrets


def supplied_admin_token(request):
    """Return the token from ``X-Admin-Token`` or the ``adminToken`` query arg."""
    return (request.headers.get("X-Admin-Token") or request.args.get("adminToken") or "").strip()


def is_admin_request(request, admin_token):
    """Compare the supplied token to the configured one; an unset token rejects everything."""
    if not admin_token:
        return False
    supplied = supplied_admin_token(request)
    if not supplied:
        return False
    return secrets.compare_digest(supplied.encode("utf-8"), admin_token.encode("utf-8"))
