"""Session factory for reconciliation tasks."""

from functools import lru_cache

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from festos_worker.settings import get_settings


@lru_cache()
def get_session_factory() -> sessionmaker:
    """Engine and session factory, created on first task run rather than at import."""
    settings = get_settings()
    url = settings.database_url_computed

    options = {"pool_pre_ping": True}
    if url.startswith("postgresql"):
        # Reconciliation runs one batch at a time
        options.update(pool_size=2, max_overflow=3)

    engine = create_engine(url, **options)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)
