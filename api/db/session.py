from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase
from common.config import POSTGRES_DSN

engine = create_engine(POSTGRES_DSN, pool_pre_ping=True)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

class Base(DeclarativeBase):
    pass

def make_session_factory(bind):
    return sessionmaker(bind=bind, autoflush=False, expire_on_commit=False)

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
