from termfees.core.database.session import async_session, engine, get_db
from termfees.core.database.base import Base, BaseModel, BigIntPK, Money

__all__ = ["async_session", "engine", "get_db", "Base", "BaseModel", "BigIntPK", "Money"]
