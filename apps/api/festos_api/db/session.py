"""Database session management."""

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from festos_api.settings import get_settings

settings = get_settings()

engine_options = {"pool_pre_ping": True}
if settings.database_url_computed.startswith("postgresql"):
    # Fast path: queries past the statement timeout fail and reads fall back to the ledger
    engine_options.update(
        pool_size=10,
        max_overflow=20,
        pool_timeout=settings.database_statement_timeout_ms / 1000,
        connect_args={"options": f"-c statement_timeout={settings.database_statement_timeout_ms}"},
    )

engine = create_engine(settings.database_url_computed, **engine_options)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

