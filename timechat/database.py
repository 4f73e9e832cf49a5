import logging

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from timechat.config import settings

logger = logging.getLogger(__name__)

SQLALCHEMY_DATABASE_URL = settings.sqlalchemy_database_url

logger.info(f"SQLAlchemy DB URL: {make_url(SQLALCHEMY_DATABASE_URL).render_as_string(hide_password=True)}")

engine = create_async_engine(SQLALCHEMY_DATABASE_URL, pool_pre_ping=True)

# Objects stay readable after commit; services return them to the routers
AsyncSessionLocal = async_sessionmaker(bind=engine, class_=AsyncSession, autoflush=False, expire_on_commit=False)

Base = declarative_base()
