# People Counter — Database Models
# Import all models here for SQLAlchemy discovery

from app.models.counter_log import CounterLog       # noqa
from app.models.counter_event import CounterEvent   # noqa
