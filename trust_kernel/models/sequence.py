"""Named sequence counter rows, incremented under a row lock."""

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from trust_kernel.db.base import Base


class SequenceCounter(Base):
    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)

    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
