# backend/database.py
import logging
import os

from dotenv import load_dotenv
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from models import Base # Import the Base from our models file

logger = logging.getLogger("cvforge.database")

# Load environment variables from the .env file
load_dotenv()


def make_engine(database_url: str):
    """Builds an engine; SQLite gets thread-sharing and in-memory gets a single pooled connection."""
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, **kwargs)
    if database_url.startswith("postgres://"):
        database_url = "postgresql://" + database_url[len("postgres://"):]
    return create_engine(database_url, pool_pre_ping=True)


# Get the database URL from the environment
DATABASE_URL = os.getenv("DATABASE_URL")

if DATABASE_URL is None:
    raise ValueError("DATABASE_URL not set in the .env file")

# The engine is the main entry point to the database
engine = make_engine(DATABASE_URL)
logger.info("Connecting to database backend: %s", engine.url.get_backend_name())
# A session is used to have a conversation with the database
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

def create_db_tables(bind=None):
    # This function will create all the tables defined in models.py
    Base.metadata.create_all(bind=bind or engine)
