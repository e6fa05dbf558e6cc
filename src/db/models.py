from __future__ import annotations

from sqlalchemy import LargeBinary
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class KvEntryOrm(Base):
    """One row of the ordered key-value namespace.

    SQLite compares BLOBs with memcmp, so ordering by `key` is byte-lexicographic.
    """

    __tablename__ = "kv_entries"

    key: Mapped[bytes] = mapped_column(LargeBinary, primary_key=True)
    value: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
