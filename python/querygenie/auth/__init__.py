"""Authentication and authorization module.

This module provides:
- Token verification (JWKS verifier)
- Auth middleware for FastAPI
- Request state with viewer identity
- The workspace permission oracle

Note: Test-only verifiers are in tests/support/test_verifier.py
"""

from querygenie.auth.middleware import AuthMiddleware, Viewer, get_viewer
from querygenie.auth.permissions import check_permission, require_permission
from querygenie.auth.verifier import JwksVerifier, TokenVerifier

__all__ = [
    "AuthMiddleware",
    "Viewer",
    "get_viewer",
    "check_permission",
    "require_permission",
    "JwksVerifier",
    "TokenVerifier",
]
