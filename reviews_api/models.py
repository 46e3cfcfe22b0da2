"""
SQLAlchemy database models.
Postgres is the source of truth for reviews, their photos and characteristic ratings.

Tables:
- reviews                 - one row per submitted review
- review_photos           - many per review, created with the review
- characteristics         - per-product characteristic names (Fit, Comfort, ...)
- characteristic_reviews  - one value per (characteristic, review)
"""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.sql import false, func

from reviews_api.database import Base


class Review(Base):
    __tablename__ = "reviews"

    id = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column(Integer, nullable=False, index=True)
    rating = Column(Integer, nullable=False)
    date = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    summary = Column(Text, nullable=False)
    body = Column(Text, nullable=False)
    recommend = Column(Boolean, nullable=False)
    reported = Column(Boolean, nullable=False, default=False, server_default=false())
    reviewer_name = Column(String(255), nullable=False)
    reviewer_email = Column(String(255), nullable=False)
    helpfulness = Column(Integer, nullable=False, default=0, server_default="0")

    def __repr__(self):
        return f"<Review id={self.id} product_id={self.product_id} rating={self.rating}>"


class ReviewPhoto(Base):
    __tablename__ = "review_photos"

    id = Column(Integer, primary_key=True, autoincrement=True)
    review_id = Column(Integer, ForeignKey("reviews.id"), nullable=False, index=True)
    url = Column(Text, nullable=False)


class Characteristic(Base):
    """Characteristic definitions are owned by the catalogue; this service only reads them."""
    __tablename__ = "characteristics"

    id = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column(Integer, nullable=False, index=True)
    name = Column(String(100), nullable=False)


class CharacteristicReview(Base):
    __tablename__ = "characteristic_reviews"

    id = Column(Integer, primary_key=True, autoincrement=True)
    characteristic_id = Column(Integer, ForeignKey("characteristics.id"), nullable=False, index=True)
    review_id = Column(Integer, ForeignKey("reviews.id"), nullable=False, index=True)
    value = Column(Integer, nullable=False)
