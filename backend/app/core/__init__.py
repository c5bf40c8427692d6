"""
Core package — cross-cutting concerns.

Modules:
    config          — environment variables & settings
    logging_config  — structured JSON logging, request context
    errors          — exception hierarchy & handlers
    health          — health check aggregation
    database        — async SQLAlchemy engine for the SQL emergency store
    middleware      — request logging and correlation ids
    locks           — per-key asyncio locks that drop idle entries
"""
