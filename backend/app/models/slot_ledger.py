"""Fill level per (date, time). Rows are created lazily on first reservation attempt."""
from datetime import date

from sqlalchemy import CheckConstraint, Date, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.db.base import Base


class SlotLedgerEntry(Base):
    __tablename__ = "slot_ledger"

    slot_date: Mapped[date] = mapped_column(Date, primary_key=True)
    slot_time: Mapped[str] = mapped_column(String(5), primary_key=True)  # "HH:MM"
    capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    booked: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        CheckConstraint("capacity >= 0", name="ck_slot_ledger_capacity"),
        CheckConstraint("booked >= 0 AND booked <= capacity", name="ck_slot_ledger_booked"),
    )

