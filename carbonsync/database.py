from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from carbonsync.config import DATABASE_URL

# --- Database Setup ---
engine = create_engine(
    DATABASE_URL,
    connect_args={"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {},
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
