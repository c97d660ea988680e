"""Idempotency keys for mutating API requests."""

import uuid
from typing import Protocol, runtime_checkable


@runtime_checkable
class IdempotentRequest(Protocol):
    """A request that carries one stable idempotency key."""

    def get_idempotency_key(self) -> str:
        ...


class IdempotentRequestMixin:
    """
    Lazily issues a version-4 UUID per request instance.

    Retries reuse the same instance, so a resent call carries the same key and
    the API can drop the duplicate. Clearing the key starts a new logical
    operation on the next access.
    """

    _idempotency_key: str = ""

    def get_idempotency_key(self) -> str:
        if not self._idempotency_key:
            self._idempotency_key = str(uuid.uuid4())
        return self._idempotency_key

    def clear_idempotency_key(self) -> None:
        self._idempotency_key = ""
