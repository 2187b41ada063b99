from __future__ import annotations


class ConfigError(RuntimeError):
    """Raised when configuration is missing or invalid."""


class StorageError(RuntimeError):
    """Raised when reading or writing registry state in SQLite fails."""


class RegistryError(RuntimeError):
    """Base class for rejected registry calls. The call had no effect."""


class Unauthorized(RegistryError):
    """Raised when the caller does not hold the required role."""

    def __init__(self, principal: str, role: str) -> None:
        self.principal = principal
        self.role = role
        super().__init__(
            f"AccessControl: account {principal.lower()} is missing role {role}"
        )


class DuplicateToken(RegistryError):
    """Raised when creating an existing token id without allow_multiple."""

    def __init__(self, token_id: int) -> None:
        self.token_id = token_id
        super().__init__("Token already exists")


class NotFound(RegistryError):
    """Raised when a call targets a token id that was never created."""

    def __init__(self, token_id: int, message: str = "Post does not exist") -> None:
        self.token_id = token_id
        super().__init__(message)
