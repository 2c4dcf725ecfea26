"""
SQL-backed registries consumed by the SSO core.

- UserStore: identity lookups and credential checks
- PublicAppRegistry: per-app authentication bypass (fail closed)
- DeploymentRegistry: host -> app resolution and custom domains
"""

from .apps import (
    AppPublicSetting,
    CustomDomain,
    DeploymentRegistry,
    PublicAppRegistry,
    validate_app_name,
    validate_domain,
)
from .schema import initialize
from .users import User, UserStore

__all__ = [
    "AppPublicSetting",
    "CustomDomain",
    "DeploymentRegistry",
    "PublicAppRegistry",
    "User",
    "UserStore",
    "initialize",
    "validate_app_name",
    "validate_domain",
]
