from __future__ import annotations

from typing import Callable, Protocol

from .errors import Unauthorized

DEFAULT_ADMIN_ROLE = "DEFAULT_ADMIN_ROLE"
MINTER_ROLE = "MINTER_ROLE"

Predicate = Callable[[str], bool]


class RoleBackend(Protocol):
    def has_role(self, role: str, principal: str) -> bool: ...

    def add_role(self, role: str, principal: str) -> None: ...

    def remove_role(self, role: str, principal: str) -> None: ...


def normalize_principal(value: str) -> str:
    """
    Canonical form of an account: stripped and lower-cased, so hex addresses
    match regardless of checksum casing.
    """
    p = value.strip().lower() if isinstance(value, str) else ""
    if not p:
        raise ValueError("principal must be non-empty")
    return p


class CapabilityStore:
    """
    Role membership: a set of (role, principal) pairs.

    Every role is administered by DEFAULT_ADMIN_ROLE. Grants and revokes are
    administrative; the write path only ever reads through predicate().
    """

    def __init__(self, backend: RoleBackend) -> None:
        self._backend = backend

    def has_role(self, role: str, principal: str) -> bool:
        p = principal.strip().lower() if isinstance(principal, str) else ""
        return bool(p) and self._backend.has_role(role, p)

    def predicate(self, role: str) -> Predicate:
        def _check(principal: str) -> bool:
            return self.has_role(role, principal)

        return _check

    def require(self, role: str, principal: str) -> None:
        if not self.has_role(role, principal):
            raise Unauthorized(principal, role)

    def bootstrap(self, admin: str) -> None:
        """Give the deploying principal the admin and minter roles."""
        account = normalize_principal(admin)
        self._backend.add_role(DEFAULT_ADMIN_ROLE, account)
        self._backend.add_role(MINTER_ROLE, account)

    def grant_role(self, role: str, principal: str, *, caller: str) -> bool:
        """Grant role to principal. Returns False when it was already held."""
        account = normalize_principal(principal)
        self.require(DEFAULT_ADMIN_ROLE, caller)
        if self._backend.has_role(role, account):
            return False
        self._backend.add_role(role, account)
        return True

    def revoke_role(self, role: str, principal: str, *, caller: str) -> bool:
        """Revoke role from principal. Returns False when it was not held."""
        account = normalize_principal(principal)
        self.require(DEFAULT_ADMIN_ROLE, caller)
        if not self._backend.has_role(role, account):
            return False
        self._backend.remove_role(role, account)
        return True
