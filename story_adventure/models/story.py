from typing import Optional
import datetime
from sqlmodel import Field, SQLModel
from sqlalchemy import Column, DateTime, Text
from sqlalchemy.sql import func


class StoredStory(SQLModel, table=True):
    key: str = Field(primary_key=True, max_length=128)
    title: Optional[str] = Field(default=None)
    story_json: str = Field(sa_column=Column(Text, nullable=False))  # Story document, state included
    created_at: datetime.datetime = Field(
        sa_column=Column(
            DateTime(timezone=True),
            server_default=func.now(),
            nullable=False,
        )
    )
    updated_at: datetime.datetime = Field(
        sa_column=Column(
            DateTime(timezone=True),
            server_default=func.now(),
            onupdate=func.now(),
            nullable=False,
        )
    )
