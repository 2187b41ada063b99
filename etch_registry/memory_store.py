from __future__ import annotations

from contextlib import contextmanager
from typing import Callable, Iterator

from .event import PubEvent
from .post import ABSENT, PostState

Undo = Callable[[], None]


class MemoryRegistryStore:
    """
    Process-local registry state: plain dicts, initialized empty.

    Inside transaction() every write journals how to reverse itself; if the
    block raises, the journal is replayed backwards so a failed write leaves no
    trace. The cost of a transaction is proportional to the writes it makes.
    """

    def __init__(self, variant: str = "multi") -> None:
        self._variant = variant
        self._posts: dict[int, PostState] = {}
        self._balances: dict[str, dict[int, int]] = {}
        self._roles: dict[str, set[str]] = {}
        self._events: list[PubEvent] = []
        self._journal: list[Undo] | None = None
        self._initialized = False

    @property
    def variant(self) -> str:
        return self._variant

    def close(self) -> None:
        return None

    def __enter__(self) -> "MemoryRegistryStore":
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.close()

    def mark_initialized(self) -> bool:
        """Return True only on the first call for this state."""
        if self._initialized:
            return False
        self._initialized = True
        self._record(self._reset_initialized)
        return True

    def _reset_initialized(self) -> None:
        self._initialized = False

    @contextmanager
    def transaction(self) -> Iterator[None]:
        if self._journal is not None:
            # Nested: the outermost block owns the journal.
            yield
            return

        journal: list[Undo] = []
        self._journal = journal
        try:
            yield
        except BaseException:
            for undo in reversed(journal):
                undo()
            raise
        finally:
            self._journal = None

    def _record(self, undo: Undo) -> None:
        if self._journal is not None:
            self._journal.append(undo)

    # posts

    def get_post(self, token_id: int) -> PostState:
        return self._posts.get(token_id, ABSENT)

    def put_post(self, token_id: int, state: PostState) -> None:
        previous = self._posts.get(token_id)
        if previous is None:
            self._record(lambda: self._posts.pop(token_id, None))
        else:
            self._record(lambda: self._posts.__setitem__(token_id, previous))
        self._posts[token_id] = state

    def post_count(self) -> int:
        return len(self._posts)

    # balances

    def balance_of(self, owner: str, token_id: int) -> int:
        return self._balances.get(owner, {}).get(token_id, 0)

    def add_balance(self, owner: str, token_id: int, quantity: int) -> None:
        held = self._balances.setdefault(owner, {})
        previous = held.get(token_id)

        def _undo() -> None:
            if previous is None:
                held.pop(token_id, None)
            else:
                held[token_id] = previous

        self._record(_undo)
        held[token_id] = (previous or 0) + quantity

    def holders(self, token_id: int) -> dict[str, int]:
        out: dict[str, int] = {}
        for owner, held in self._balances.items():
            qty = held.get(token_id, 0)
            if qty > 0:
                out[owner] = qty
        return out

    # roles

    def has_role(self, role: str, principal: str) -> bool:
        return principal in self._roles.get(role, ())

    def add_role(self, role: str, principal: str) -> None:
        members = self._roles.setdefault(role, set())
        if principal in members:
            return
        members.add(principal)
        self._record(lambda: members.discard(principal))

    def remove_role(self, role: str, principal: str) -> None:
        members = self._roles.get(role)
        if not members or principal not in members:
            return
        members.discard(principal)
        self._record(lambda: members.add(principal))

    # audit records

    def append_event(self, record: PubEvent) -> None:
        n = len(self._events)
        self._events.append(record)
        self._record(lambda: self._events.__delitem__(slice(n, None)))

    def events(self, *, token_id: int | None = None) -> list[PubEvent]:
        if token_id is None:
            return list(self._events)
        return [r for r in self._events if r.token_id == token_id]
