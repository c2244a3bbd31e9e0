from fastapi import Depends
from sqlalchemy.orm import Session

from reqport.database import get_db
from reqport.services.session import ImportSessionRegistry, registry
from reqport.services.store import SqlStore, Store


def get_store(db: Session = Depends(get_db)) -> Store:
    return SqlStore(db)


def get_session_registry() -> ImportSessionRegistry:
    return registry
