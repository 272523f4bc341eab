import uuid
from datetime import UTC, datetime

from sqlalchemy import DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class Skill(Base):
    """
    Published skill package.

    Listing fields are maintained by the catalogue; the signal columns are
    filled by external jobs (scanner, review aggregation, localisation). This
    service only writes the certification cache: ``certification``,
    ``quality_score`` and ``certified_at``.
    """

    __tablename__ = "skills"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    creator_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
    )
    slug: Mapped[str] = mapped_column(String(120), unique=True, nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    version: Mapped[str] = mapped_column(String(40), nullable=False, default="1.0.0")
    file_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    description_long: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Quality signals
    test_coverage: Mapped[float | None] = mapped_column(Float, nullable=True)
    static_analysis_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    rating_avg: Mapped[float | None] = mapped_column(Float, nullable=True)
    rating_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    i18n_completeness: Mapped[float | None] = mapped_column(Float, nullable=True)
    last_critical_defect_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    published_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Certification cache
    certification: Mapped[str] = mapped_column(String(10), nullable=False, default="none")
    quality_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    certified_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=lambda: datetime.now(UTC).replace(tzinfo=None), nullable=False
    )
