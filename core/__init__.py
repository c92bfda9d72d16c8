"""
Core utilities and configuration for the record transfer engine.

This package provides foundational components used throughout the engine:

Modules:
    config: Application configuration and environment variable management
    database: Database connection and session management for the run ledger
    exceptions: Custom exception hierarchy for error handling
    logging: Logging configuration and utilities

Usage:
    from core.config import settings
    from core.database import get_session
    from core.exceptions import SubmissionError, JobTimeoutError
    from core.logging import setup_logging

Example:
    # Initialize logging
    setup_logging()

    # Override a remote limit for one environment
    #   export PREDICATE_MAX_LENGTH=20000
"""
