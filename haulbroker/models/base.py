from datetime import datetime, timezone

from sqlalchemy.orm import DeclarativeBase, declared_attr


class Base(DeclarativeBase):
    """Base class that sets naming convention for tables."""

    @declared_attr.directive
    def __tablename__(cls) -> str:  # type: ignore[misc]
        return cls.__name__.lower()


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DateTime columns used everywhere."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def enum_values(enum_class) -> list[str]:
    return [e.value for e in enum_class]
