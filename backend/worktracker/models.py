from __future__ import annotations

import datetime as dt

from sqlalchemy import BigInteger, Column, Date, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class ProjectEntity(Base):
    __tablename__ = "project"

    id = Column(Integer, primary_key=True, autoincrement=False)
    name = Column(String(255), nullable=False, index=True)
    description = Column(Text, nullable=True)
    version = Column(Integer, nullable=False, default=0)


class ProjectTaskEntity(Base):
    __tablename__ = "project_task"

    id = Column(Integer, primary_key=True, autoincrement=False)
    name = Column(String(255), nullable=False, index=True)
    description = Column(Text, nullable=True)
    version = Column(Integer, nullable=False, default=0)


class ProjectTaskKeyEntity(Base):
    __tablename__ = "project_task_key"

    project_id = Column(Integer, ForeignKey("project.id"), primary_key=True)
    task_id = Column(Integer, ForeignKey("project_task.id"), primary_key=True)


class TimeRecordEntity(Base):
    __tablename__ = "record"

    id = Column(Integer, primary_key=True, autoincrement=False)
    project_id = Column(Integer, ForeignKey("project.id"), nullable=False, index=True)
    task_id = Column(Integer, ForeignKey("project_task.id"), nullable=False, index=True)
    date = Column(Date, nullable=False, index=True)
    start = Column(DateTime, nullable=True)
    finish = Column(DateTime, nullable=True)
    duration = Column(BigInteger, nullable=False, default=0)  # milliseconds
    note = Column(Text, nullable=False, default="")
    cost = Column(Float, nullable=False, default=0.0)
    location = Column(Integer, nullable=False, default=0)
    status = Column(String(20), nullable=False, default="current")
    version = Column(Integer, nullable=False, default=0)

    def bump_version(self) -> None:
        self.version = (self.version or 0) + 1


class ReportRecordEntity(Base):
    """Cached row of a generated report, kept with the names shown at the time."""

    __tablename__ = "report"

    id = Column(Integer, primary_key=True, autoincrement=False)
    project_id = Column(Integer, nullable=False, index=True)
    project_name = Column(String(255), nullable=False, default="")
    task_id = Column(Integer, nullable=False, index=True)
    task_name = Column(String(255), nullable=False, default="")
    date = Column(Date, nullable=False, index=True)
    start = Column(DateTime, nullable=True)
    finish = Column(DateTime, nullable=True)
    duration = Column(BigInteger, nullable=False, default=0)  # milliseconds
    note = Column(Text, nullable=False, default="")
    cost = Column(Float, nullable=False, default=0.0)
    location = Column(Integer, nullable=False, default=0)
    status = Column(String(20), nullable=False, default="current")
    version = Column(Integer, nullable=False, default=0)


class AppSetting(Base):
    __tablename__ = "app_settings"

    key = Column(String(100), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
