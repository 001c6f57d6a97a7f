from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
import os

from secmon.config import settings

DATABASE_URL = settings.DATABASE_URL

# Ensure directory exists for file-backed SQLite
if DATABASE_URL.startswith("sqlite:///") and ":memory:" not in DATABASE_URL:
    db_dir = os.path.dirname(DATABASE_URL[len("sqlite:///"):])
    if db_dir:
        os.makedirs(db_dir, exist_ok=True)

# check_same_thread is needed for SQLite only
connect_args = {"check_same_thread": False} if "sqlite" in DATABASE_URL else {}

engine = create_engine(DATABASE_URL, connect_args=connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
