from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, func

from haulbroker.models.base import Base, utcnow


class FreightRating(Base):
    __tablename__ = "freight_rating"

    id = Column(String, primary_key=True)
    freight_id = Column(String, ForeignKey("freight.id"), nullable=False, index=True)
    assignment_id = Column(String, ForeignKey("freight_assignment.id"), nullable=False, index=True)
    rater_id = Column(String, nullable=False)
    rated_id = Column(String, nullable=False, index=True)
    score = Column(Integer, nullable=False)
    comment = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("assignment_id", "rater_id", name="uq_freight_rating_rater"),
        CheckConstraint("score >= 1 AND score <= 5", name="ck_freight_rating_score_range"),
    )
