"""Request-scoped context passed explicitly into every mutating operation."""

from dataclasses import dataclass, field
from uuid import UUID, uuid4


@dataclass(frozen=True)
class RequestContext:
    """
    Who is acting, and under which correlation id.

    ``actor_id`` is an opaque attribution tag supplied by the identity layer;
    the kernel records it on rows and audit entries but makes no
    authorization decision from it.
    """

    actor_id: UUID
    correlation_id: str = field(default_factory=lambda: uuid4().hex)

    def log_fields(self) -> dict[str, str]:
        return {"actor_id": str(self.actor_id), "correlation_id": self.correlation_id}
