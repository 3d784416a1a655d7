"""
Module: trust_kernel.selectors.base
Responsibility: Base class for read-only query selectors.  Selectors are the
    read side of the kernel: they turn rows into frozen DTOs from
    ``trust_kernel.domain.dtos``.
Architecture position: Kernel > Selectors.  May import from models/ and
    domain/.  MUST NOT import from services/.

Invariants enforced:
    - Selectors never add, delete, flush or commit.
    - Selectors return DTOs, not ORM instances.
"""

from sqlalchemy.orm import Session


class BaseSelector:
    """Holds the caller's session; subclasses add the queries."""

    def __init__(self, session: Session):
        self.session = session
