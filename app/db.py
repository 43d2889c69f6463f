from __future__ import annotations

import os
from typing import Optional

from dotenv import load_dotenv
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from supabase import Client, create_client

# Load env before anything else
load_dotenv()

# Environment variables
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
SUPABASE_URL = os.getenv("SUPABASE_URL", "")
SUPABASE_SERVICE_ROLE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")

# Declarative base for models
Base = declarative_base()


def create_session_factory(engine: AsyncEngine) -> sessionmaker:
    """Session factory used by request handlers, sync jobs and the scheduler."""
    return sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


# SQLAlchemy engine & session
engine = create_async_engine(DATABASE_URL, echo=False, future=True)
AsyncSessionLocal = create_session_factory(engine)


# Supabase client (optional, only used for the connection health check)
SUPABASE: Optional[Client] = None
if SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY:
    SUPABASE = create_client(SUPABASE_URL, SUPABASE_SERVICE_ROLE_KEY)
