from __future__ import annotations

from dataclasses import replace
from typing import ContextManager, Protocol

from .capabilities import MINTER_ROLE, Predicate
from .errors import DuplicateToken, NotFound, Unauthorized
from .post import PostState

VARIANTS = ("multi", "single")
UINT256_MAX = 2**256 - 1


class RegistryStore(Protocol):
    @property
    def variant(self) -> str: ...

    def transaction(self) -> ContextManager[None]: ...

    def get_post(self, token_id: int) -> PostState: ...

    def put_post(self, token_id: int, state: PostState) -> None: ...

    def post_count(self) -> int: ...

    def balance_of(self, owner: str, token_id: int) -> int: ...

    def add_balance(self, owner: str, token_id: int, quantity: int) -> None: ...

    def holders(self, token_id: int) -> dict[str, int]: ...


def _check_token_id(token_id: object) -> int:
    if isinstance(token_id, bool) or not isinstance(token_id, int):
        raise ValueError("token_id must be an integer")
    if not 0 <= token_id <= UINT256_MAX:
        raise ValueError("token_id must be between 0 and 2**256 - 1")
    return token_id


def _check_quantity(quantity: object) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValueError("quantity must be an integer")
    if not 1 <= quantity <= UINT256_MAX:
        raise ValueError("quantity must be between 1 and 2**256 - 1")
    return quantity


class RegistryCore:
    """
    Per-token post state and per-owner balances.

    One class serves both configurations: "single" assigns sequential ids from
    0 and issues exactly one unit per post; "multi" takes caller-supplied ids
    and honors quantity and allow_multiple. Every check runs before the first
    write, and the writes share one store transaction.
    """

    def __init__(
        self,
        store: RegistryStore,
        *,
        can_create: Predicate,
        can_update: Predicate,
    ) -> None:
        if store.variant not in VARIANTS:
            raise ValueError(f"unknown registry variant: {store.variant!r}")
        self._store = store
        self._can_create = can_create
        self._can_update = can_update

    @property
    def variant(self) -> str:
        return self._store.variant

    def create_post(
        self,
        caller: str,
        uri: str,
        *,
        token_id: int | None = None,
        quantity: int = 1,
        allow_multiple: bool = False,
    ) -> int:
        """Create a post, or re-issue an existing one, and return its token id."""
        if not self._can_create(caller):
            raise Unauthorized(caller, MINTER_ROLE)
        if not isinstance(uri, str):
            raise ValueError("uri must be a string")

        if self.variant == "single":
            with self._store.transaction():
                assigned = self._store.post_count()
                self._store.put_post(
                    assigned, PostState(uri=uri, exists=True, total_issued=1)
                )
                self._store.add_balance(caller, assigned, 1)
            return assigned

        if token_id is None:
            raise ValueError("token_id is required for multi-instance registries")
        tid = _check_token_id(token_id)
        qty = _check_quantity(quantity)

        with self._store.transaction():
            current = self._store.get_post(tid)
            if current.exists:
                if not allow_multiple:
                    raise DuplicateToken(tid)
                if current.total_issued + qty > UINT256_MAX:
                    raise ValueError("total_issued would exceed 2**256 - 1")
                # Re-issue keeps the original uri.
                updated = replace(current, total_issued=current.total_issued + qty)
            else:
                updated = PostState(uri=uri, exists=True, total_issued=qty)

            self._store.put_post(tid, updated)
            self._store.add_balance(caller, tid, qty)
        return tid

    def update_post(self, caller: str, token_id: int, uri: str) -> None:
        if not self._can_update(caller):
            raise Unauthorized(caller, MINTER_ROLE)
        tid = _check_token_id(token_id)
        if not isinstance(uri, str):
            raise ValueError("uri must be a string")

        with self._store.transaction():
            current = self._store.get_post(tid)
            if not current.exists:
                raise NotFound(tid)
            self._store.put_post(tid, replace(current, uri=uri))

    # reads

    def post(self, token_id: int) -> PostState:
        return self._store.get_post(_check_token_id(token_id))

    def total_posts(self) -> int:
        return self._store.post_count()

    def current_token_id(self) -> int:
        """The next id a single-instance registry will assign."""
        return self._store.post_count()

    def balance_of(self, owner: str, token_id: int) -> int:
        return self._store.balance_of(owner, _check_token_id(token_id))

    def uri(self, token_id: int) -> str:
        return self.post(token_id).uri

    def token_uri(self, token_id: int) -> str:
        state = self.post(token_id)
        if not state.exists:
            raise NotFound(token_id, "ERC721: invalid token ID")
        return state.uri

    def owner_of(self, token_id: int) -> str:
        if self.variant != "single":
            raise ValueError("owner_of is only defined for single-instance registries")
        state = self.post(token_id)
        if not state.exists:
            raise NotFound(token_id, "ERC721: invalid token ID")
        holders = self._store.holders(token_id)
        return next(iter(holders))
