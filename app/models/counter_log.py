# app/models/counter_log.py
"""
Counter log table — the durable, append-only record of every accepted reading.
Written by ingestion_service, read by the counter and history routers.
"""

from sqlalchemy import Column, Integer, String, DateTime
from app.database import Base


class CounterLog(Base):
    __tablename__ = "counter_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    in_count = Column(Integer, nullable=False)
    out_count = Column(Integer, nullable=False)
    aforo = Column(Integer, nullable=False)
    device_id = Column(String(255), index=True)
    timestamp = Column(DateTime, nullable=False, index=True)   # device time, naive UTC
    created_at = Column(DateTime, nullable=False, index=True)  # server receipt time

    def __repr__(self):
        return f"<CounterLog {self.id} in={self.in_count} out={self.out_count} aforo={self.aforo}>"
