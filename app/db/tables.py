"""SQLAlchemy table definitions.

The service persists schemaless documents, so Postgres holds a single
key/value table.  ``version`` is the optimistic-locking column: the ORM
adds ``WHERE version = <loaded>`` to every UPDATE and bumps it, raising
StaleDataError when another transaction got there first.
"""

from __future__ import annotations

import datetime

from sqlalchemy import DateTime, Integer, String, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.db.engine import Base


class DocumentRow(Base):
    __tablename__ = "documents"

    key: Mapped[str] = mapped_column(
        String(512, collation="C"), primary_key=True
    )
    value: Mapped[dict] = mapped_column(JSONB, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    __mapper_args__ = {"version_id_col": version}
