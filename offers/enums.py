# offers/enums.py
from enum import Enum

class OfferType(Enum):
    BUY = 0
    SELL = 1

class Language(Enum):
    EN = "EN"
    ES = "ES"

class SchedulerState(Enum):
    STOPPED = "stopped"
    ARMED = "armed"
    RUNNING = "running"

class CycleStep(Enum):
    AGGREGATE = "aggregate"
    NEW = "new"
    INACTIVE = "inactive"
    EVICT = "evict"
    PERSIST = "persist"
