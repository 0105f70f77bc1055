from sqlalchemy import Boolean, CheckConstraint, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.db.base import Base


class BookingType(Base):
    __tablename__ = "booking_types"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    slug: Mapped[str] = mapped_column(String(200), nullable=False, unique=True, index=True)
    description: Mapped[str | None] = mapped_column(Text)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
    buffer_after_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Independent of per-slot capacity; both caps are enforced separately.
    max_bookings_per_day: Mapped[int | None] = mapped_column(Integer)
    requires_approval: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    confirmation_message: Mapped[str | None] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint("duration_minutes > 0", name="ck_booking_types_duration"),
        CheckConstraint("buffer_after_minutes >= 0", name="ck_booking_types_buffer"),
        CheckConstraint(
            "max_bookings_per_day IS NULL OR max_bookings_per_day > 0",
            name="ck_booking_types_daily_cap",
        ),
    )

    def __repr__(self) -> str:
        return f"<BookingType {self.slug}>"
