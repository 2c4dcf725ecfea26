"""
Cross-domain SSO session and authorization core.

Public API:
- Store: SessionStore, generate_session_id
- Cookies: CookiePolicy, classify_host, normalize_host
- Gate: AuthorizationGate, session_id_from_cookie_header
- Bridge: SSOBridge, BridgeState, clean_vite_params
- Decorators: session_required

Import Rules:
- External callers: Use `from citizen.sso import X` (this facade)
- Internal sso modules: Use `from .submodule import X` (direct imports)
"""

# =============================================================================
# Types
# =============================================================================
from .types import (
    AuthorizationDecision,
    CookieAttributes,
    DecisionReason,
    DomainType,
    Session,
    SessionLookup,
)

# =============================================================================
# Components (leaves first)
# =============================================================================
from .cookies import CookiePolicy, classify_host, is_local_host, normalize_host
from .store import SessionStore, generate_session_id
from .gate import AuthorizationGate, session_id_from_cookie_header
from .bridge import (
    BridgeOutcome,
    BridgeState,
    CheckOutcome,
    CookieGrant,
    SSOBridge,
    clean_vite_params,
)

# =============================================================================
# Decorators
# =============================================================================
from .decorators import session_required

__all__ = [
    "AuthorizationDecision",
    "AuthorizationGate",
    "BridgeOutcome",
    "BridgeState",
    "CheckOutcome",
    "CookieAttributes",
    "CookieGrant",
    "CookiePolicy",
    "DecisionReason",
    "DomainType",
    "SSOBridge",
    "Session",
    "SessionLookup",
    "SessionStore",
    "classify_host",
    "clean_vite_params",
    "generate_session_id",
    "is_local_host",
    "normalize_host",
    "session_id_from_cookie_header",
    "session_required",
]
