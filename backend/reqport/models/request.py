import uuid
from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import String, DateTime, ForeignKey, Integer, Text, Enum as SAEnum, JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship

from reqport.database import Base
from reqport.services.ir import AuthType


class HttpMethod(str, PyEnum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"
    HEAD = "HEAD"
    OPTIONS = "OPTIONS"


class Request(Base):
    __tablename__ = "requests"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    collection_id: Mapped[str] = mapped_column(ForeignKey("collections.id", ondelete="CASCADE"))
    folder_id: Mapped[str | None] = mapped_column(ForeignKey("folders.id", ondelete="SET NULL"))
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    method: Mapped[HttpMethod] = mapped_column(SAEnum(HttpMethod), default=HttpMethod.GET)
    url: Mapped[str] = mapped_column(Text, nullable=False, default="")
    headers: Mapped[dict | None] = mapped_column(JSON, default=dict)
    disabled_headers: Mapped[dict | None] = mapped_column(JSON, default=dict)
    body: Mapped[str | None] = mapped_column(Text)
    body_type: Mapped[str | None] = mapped_column(String(50), default="none")
    # [{"key", "value", "enabled"}]
    query_params: Mapped[list | None] = mapped_column(JSON, default=list)
    auth_type: Mapped[AuthType] = mapped_column(SAEnum(AuthType), default=AuthType.NONE)
    auth_config: Mapped[dict | None] = mapped_column(JSON, default=dict)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    collection: Mapped["Collection"] = relationship(back_populates="requests")  # noqa: F821
