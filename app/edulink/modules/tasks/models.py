from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING

from sqlalchemy import BigInteger, Boolean, Date, DateTime, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.edulink.constants import TITLE_MAX_LENGTH
from app.edulink.models import Base

if TYPE_CHECKING:
    from app.edulink.models import User


class Task(Base):
    __tablename__ = "tasks"
    __table_args__ = (
        Index("idx_tasks_owner_due", "owner_user_id", "due_date"),
        Index("idx_tasks_owner_done", "owner_user_id", "done"),
    )

    # Epoch-millisecond id assigned at creation; also the identity used by JSON export/import.
    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)

    title: Mapped[str] = mapped_column(String(TITLE_MAX_LENGTH), nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    priority: Mapped[str] = mapped_column(String(16), nullable=False, default="Normal")
    done: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    owner_user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    workspace_role: Mapped[str | None] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    owner: Mapped["User"] = relationship("User", lazy="joined")

    @property
    def date_iso(self) -> str:
        return self.due_date.isoformat()
