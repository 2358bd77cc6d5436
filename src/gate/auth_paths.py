from __future__ import annotations

from dataclasses import dataclass

from .config import PathConfig

__all__ = ["AuthFlowPaths", "apply_path_overrides", "build_auth_paths"]


@dataclass
class AuthFlowPaths:
    """Endpoint paths of the OAuth2 login flow.

    Owned by the auth-flow component and handed to it at construction,
    so overrides are visible to it without module-level state.
    """

    login: str = "/login"
    logout: str = "/logout"
    callback: str = "/oauth2callback"
    error: str = "/oauth2error"


def apply_path_overrides(paths: PathConfig, table: AuthFlowPaths) -> None:
    if paths.login:
        table.login = paths.login
    if paths.logout:
        table.logout = paths.logout
    if paths.callback:
        table.callback = paths.callback
    if paths.error:
        table.error = paths.error


def build_auth_paths(paths: PathConfig) -> AuthFlowPaths:
    table = AuthFlowPaths()
    apply_path_overrides(paths, table)
    return table
