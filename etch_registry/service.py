from __future__ import annotations

from threading import RLock
from typing import Protocol

from .audit import AuditEmitter, DeliveryFailure
from .capabilities import MINTER_ROLE, CapabilityStore, RoleBackend, normalize_principal
from .config_schema import AppConfig
from .errors import RegistryError
from .event import PubEvent, SignedEvent
from .memory_store import MemoryRegistryStore
from .post import PostState
from .registry import RegistryCore, RegistryStore
from .run_log import RunLogger
from .storage import SQLiteRegistryStore


class RegistryBackend(RegistryStore, RoleBackend, Protocol):
    def mark_initialized(self) -> bool: ...

    def append_event(self, record: PubEvent) -> None: ...

    def events(self, *, token_id: int | None = None) -> list[PubEvent]: ...

    def close(self) -> None: ...


def _check_event(event: SignedEvent) -> SignedEvent:
    if not isinstance(event, SignedEvent):
        raise ValueError("event must be a SignedEvent")
    return event


class PostRegistry:
    """
    Public surface of the post registry.

    Each write is capability check, then registry mutation, then exactly one
    audit emission, all under one lock. A rejected call raises and leaves
    state, the audit log and subscribers untouched. Reads take the same lock,
    so they never observe a write half applied.

    Principals are compared in normalized form (stripped, lower-cased).
    """

    def __init__(
        self,
        store: RegistryBackend,
        *,
        admin: str | None = None,
        open_minting: bool = False,
        emitter: AuditEmitter | None = None,
        logger: RunLogger | None = None,
    ) -> None:
        self._store = store
        self._capabilities = CapabilityStore(store)
        is_minter = self._capabilities.predicate(MINTER_ROLE)
        self._core = RegistryCore(
            store,
            can_create=(lambda _caller: True) if open_minting else is_minter,
            can_update=is_minter,
        )
        self._emitter = emitter if emitter is not None else AuditEmitter()
        self._logger = logger
        self._lock = RLock()

        if admin is not None:
            with store.transaction():
                if store.mark_initialized():
                    self._capabilities.bootstrap(admin)
                    self._log(
                        "registry_initialized",
                        caller=normalize_principal(admin),
                        variant=store.variant,
                    )

    def close(self) -> None:
        with self._lock:
            self._store.close()

    def __enter__(self) -> "PostRegistry":
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.close()

    @property
    def variant(self) -> str:
        return self._core.variant

    @property
    def emitter(self) -> AuditEmitter:
        return self._emitter

    # writes

    def create_post(
        self,
        caller: str,
        uri: str,
        event: SignedEvent,
        *,
        token_id: int | None = None,
        quantity: int = 1,
        allow_multiple: bool = False,
    ) -> int:
        """
        Record a post and return its token id.

        Single-instance registries assign the next sequential id and ignore
        token_id and quantity. Multi-instance registries require token_id and
        raise DuplicateToken for an existing id unless allow_multiple is set.
        """
        who = normalize_principal(caller)
        signed = _check_event(event)

        with self._lock:
            try:
                with self._store.transaction():
                    tid = self._core.create_post(
                        who,
                        uri,
                        token_id=token_id,
                        quantity=quantity,
                        allow_multiple=bool(allow_multiple),
                    )
                    record = PubEvent(
                        action="create",
                        token_id=tid,
                        uri=uri,
                        caller=who,
                        event=signed,
                        variant=self.variant,
                    )
                    self._store.append_event(record)
            except (RegistryError, ValueError) as e:
                self._rejected("create_post", who, e, token_id=token_id)
                raise

            self._publish(record)

        self._log(
            "post_created",
            caller=who,
            token_id=tid,
            quantity=1 if self.variant == "single" else quantity,
            event_id=signed.event_id,
        )
        return tid

    def update_post(
        self,
        caller: str,
        token_id: int,
        uri: str,
        event: SignedEvent,
    ) -> None:
        who = normalize_principal(caller)
        signed = _check_event(event)

        with self._lock:
            try:
                with self._store.transaction():
                    self._core.update_post(who, token_id, uri)
                    record = PubEvent(
                        action="update",
                        token_id=token_id,
                        uri=uri,
                        caller=who,
                        event=signed,
                        variant=self.variant,
                    )
                    self._store.append_event(record)
            except (RegistryError, ValueError) as e:
                self._rejected("update_post", who, e, token_id=token_id)
                raise

            self._publish(record)

        self._log("post_updated", caller=who, token_id=token_id, event_id=signed.event_id)

    # capability management

    def has_role(self, role: str, principal: str) -> bool:
        with self._lock:
            return self._capabilities.has_role(role, principal)

    def grant_role(self, role: str, principal: str, *, caller: str) -> bool:
        who = normalize_principal(caller)
        with self._lock:
            try:
                with self._store.transaction():
                    changed = self._capabilities.grant_role(role, principal, caller=who)
            except (RegistryError, ValueError) as e:
                self._rejected("grant_role", who, e, role=role, account=principal)
                raise
        if changed:
            self._log("role_granted", caller=who, role=role, account=normalize_principal(principal))
        return changed

    def revoke_role(self, role: str, principal: str, *, caller: str) -> bool:
        who = normalize_principal(caller)
        with self._lock:
            try:
                with self._store.transaction():
                    changed = self._capabilities.revoke_role(role, principal, caller=who)
            except (RegistryError, ValueError) as e:
                self._rejected("revoke_role", who, e, role=role, account=principal)
                raise
        if changed:
            self._log("role_revoked", caller=who, role=role, account=normalize_principal(principal))
        return changed

    # reads

    def post(self, token_id: int) -> PostState:
        with self._lock:
            return self._core.post(token_id)

    def total_posts(self) -> int:
        with self._lock:
            return self._core.total_posts()

    def current_token_id(self) -> int:
        with self._lock:
            return self._core.current_token_id()

    def balance_of(self, owner: str, token_id: int) -> int:
        account = normalize_principal(owner)
        with self._lock:
            return self._core.balance_of(account, token_id)

    def uri(self, token_id: int) -> str:
        with self._lock:
            return self._core.uri(token_id)

    def token_uri(self, token_id: int) -> str:
        with self._lock:
            return self._core.token_uri(token_id)

    def owner_of(self, token_id: int) -> str:
        with self._lock:
            return self._core.owner_of(token_id)

    def events(self, *, token_id: int | None = None) -> list[PubEvent]:
        """Audit records persisted by the backing store, oldest first."""
        with self._lock:
            return self._store.events(token_id=token_id)

    # audit delivery and logging

    def _publish(self, record: PubEvent) -> None:
        # The write has committed; a failing subscriber is reported, not raised.
        for failure in self._emitter.emit(record):
            self._delivery_failed(record, failure)

    def _delivery_failed(self, record: PubEvent, failure: DeliveryFailure) -> None:
        if self._logger is not None:
            self._logger.exception(
                "audit_delivery_failed",
                exc=failure.error,
                caller=record.caller,
                token_id=record.token_id,
                action=record.action,
                subscriber=getattr(failure.subscriber, "__qualname__", repr(failure.subscriber)),
            )

    def _log(self, event: str, *, caller: str | None = None, **data: object) -> None:
        if self._logger is not None:
            self._logger.info(event, caller=caller, **data)

    def _rejected(self, op: str, caller: str, exc: BaseException, **data: object) -> None:
        if self._logger is not None:
            self._logger.warning(
                f"{op}_rejected",
                caller=caller,
                error_type=type(exc).__name__,
                error=str(exc),
                **data,
            )


def open_registry(config: AppConfig, *, logger: RunLogger | None = None) -> PostRegistry:
    """
    Build a PostRegistry with the backend and policy named by config.

    With a logger, every published PubEvent is also copied into the run log.
    """
    settings = config.registry
    store: RegistryBackend
    if config.storage.in_memory:
        store = MemoryRegistryStore(settings.variant)
    else:
        store = SQLiteRegistryStore.open(config.storage.path, variant=settings.variant)

    registry = PostRegistry(
        store,
        admin=settings.admin,
        open_minting=settings.open_minting,
        logger=logger,
    )
    if logger is not None:
        registry.emitter.subscribe(logger.audit_sink())
    return registry
