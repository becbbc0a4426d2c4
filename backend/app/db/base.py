from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Primary transactional store: promo codes and orders."""


class AnalyticsBase(DeclarativeBase):
    """Analytics read model; bound to its own database."""
