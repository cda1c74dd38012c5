# offers/__init__.py
"""
Offer reconciliation subsystem.

Provides:
- Configuration snapshot, currency and coordinator tables
- Core domain enums & models (Offer, NotificationRecord, CycleReport)
- Durable offer state store with legacy-format migration
- Services for coordinator aggregation, notification, reconciliation and scheduling
"""
