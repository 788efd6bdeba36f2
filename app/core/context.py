"""Request identity carried into every ballot store transaction."""

from dataclasses import dataclass, field
from enum import Enum
import uuid


class Isolation(str, Enum):
    """Transaction isolation levels understood by the ballot store."""

    READ_COMMITTED = "read_committed"
    REPEATABLE_READ = "repeatable_read"
    SERIALIZABLE = "serializable"


def new_request_id() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True)
class RequestContext:
    """
    Actor and request identity for one unit of work.

    The values are written into the transaction with ``set_config(..., true)``
    so audit triggers can read ``app.actor_user_id``, ``app.organization_id``
    and ``app.request_id``. Transaction-local settings are discarded at
    COMMIT/ROLLBACK and never leak into another request sharing the pooled
    connection.
    """

    actor_user_id: int | None
    organization_id: int | None = None
    request_id: str = field(default_factory=new_request_id)

    @classmethod
    def system(cls, request_id: str | None = None) -> "RequestContext":
        """Context for work not triggered by a user (scheduler ticks)."""
        return cls(actor_user_id=None, request_id=request_id or new_request_id())

    def session_settings(self) -> dict[str, str]:
        """Session-scoped settings applied at the start of a transaction."""
        return {
            "app.actor_user_id": "" if self.actor_user_id is None else str(self.actor_user_id),
            "app.organization_id": ""
            if self.organization_id is None
            else str(self.organization_id),
            "app.request_id": self.request_id,
        }
