"""
emergency — SOS lifecycle and emergency alert orchestration.

Sub-modules:
    models          — EmergencyRecord, TimelineEntry, TrackingState
    repository      — storage interfaces + in-memory implementations
    sql_repository  — SQLAlchemy async implementations
    coordinator     — state machine + SOS fan-out
"""
