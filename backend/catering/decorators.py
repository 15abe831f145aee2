# Overview: Authentication decorator for API routes (external identity token -> local user).

from functools import wraps

import jwt
from flask import current_app, g, jsonify, request

from .capabilities import capabilities_for
from .services import identity_service


def decode_identity_token(token: str) -> dict:
    """
    Verify an identity token issued by the external provider.

    Raises jwt.InvalidTokenError on a bad signature, expiry, audience or
    issuer mismatch, or when the subject claim is missing.
    """
    audience = current_app.config.get("IDENTITY_TOKEN_AUDIENCE")
    issuer = current_app.config.get("IDENTITY_TOKEN_ISSUER")
    claims = jwt.decode(
        token,
        current_app.config["IDENTITY_TOKEN_SECRET"],
        algorithms=current_app.config["IDENTITY_TOKEN_ALGORITHMS"],
        audience=audience,
        issuer=issuer,
        options={"require": ["sub"], "verify_aud": audience is not None},
    )
    if not str(claims.get("sub") or "").strip():
        raise jwt.InvalidTokenError("Token subject is empty")
    return claims


def require_auth(f):
    """
    Require a verified identity and establish the acting user.

    Sets the following Flask g attributes:
    - g.current_user: the local User (created on first access)
    - g.capabilities: Capabilities computed once from the stored role

    SECURITY: Any role claim inside the token is ignored; the role always
    comes from the User row. Returns 401 if:
    - No Authorization header
    - Invalid, expired or unverifiable token
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authentication required"}), 401

        token = auth_header.split(" ", 1)[1].strip()

        try:
            claims = decode_identity_token(token)
        except jwt.InvalidTokenError as e:
            current_app.logger.info("Rejected identity token", extra={"reason": str(e)})
            return jsonify({"error": "Invalid or expired token"}), 401

        user = identity_service.ensure_user(
            external_id=str(claims["sub"]),
            email=claims.get("email"),
            name=claims.get("name"),
        )

        g.current_user = user
        g.capabilities = capabilities_for(user.role)

        return f(*args, **kwargs)

    return decorated_function
