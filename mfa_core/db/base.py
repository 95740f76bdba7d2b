from sqlalchemy.orm import declarative_base

Base = declarative_base()

# Import models so Alembic can discover metadata
from mfa_core.models import challenge, factor, mfa_event  # noqa: E402,F401
