from sqlalchemy import Column, Integer, DateTime, Text
from dmreply.core.database import Base
from datetime import datetime


class ExecutionLog(Base):
    __tablename__ = "execution_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    message = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
