"""
Core package — cross-cutting concerns.

Modules:
    config          — environment variables & settings
    logging_config  — structured logging
    errors          — application error type & handlers
    middleware      — error envelopes & request logging
    database        — async PostgreSQL connection pool
"""
