"""SQLAlchemy models package.

All ORM classes are registered on import so ``Base.metadata`` is complete
regardless of import order.
"""

from app.models import (  # noqa: F401
    content_item,
    ingestion_job,
)
