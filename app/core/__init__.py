"""Core package: provides models, database helpers, settings, errors and shared utilities."""

from .db import Base, create_session_factory, get_engine, init_db  # noqa: F401
from .models import Category, Direction, ParsedTransaction, ParseStatus  # noqa: F401
from .settings import Settings, get_settings  # noqa: F401
from .utils import fingerprint, get_logger  # noqa: F401
