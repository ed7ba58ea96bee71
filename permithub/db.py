from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from permithub.config import settings

engine = create_engine(settings.database_url_normalized, pool_pre_ping=True)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
