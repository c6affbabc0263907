# app/models/counter_event.py
"""
Micro-event table — individual entry/exit observations a device may send
alongside a reading. No foreign key back to counter_logs.
"""

from sqlalchemy import Boolean, Column, Integer, String, DateTime
from app.database import Base


class CounterEvent(Base):
    __tablename__ = "counter_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    device_id = Column(String(255), index=True)
    is_entry = Column(Boolean, nullable=False)
    aforo_at_time = Column(Integer, nullable=False)
    event_timestamp = Column(DateTime, nullable=False, index=True)
    created_at = Column(DateTime, nullable=False)

    def __repr__(self):
        kind = "entry" if self.is_entry else "exit"
        return f"<CounterEvent {self.id} {kind} aforo={self.aforo_at_time}>"
