from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID


@dataclass(frozen=True)
class RequestContext:
    """Who is acting on the ledger for the duration of one request or CLI command."""

    actor: str
    actor_id: UUID | None = None
    request_id: str | None = None

    @classmethod
    def cli(cls) -> "RequestContext":
        return cls(actor="cli")
