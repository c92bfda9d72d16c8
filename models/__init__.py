"""
SQLAlchemy ORM models and shared enums.

Models:
    base: Base declarative class and shared enums (Operation, Engine,
          JobState, Outcome, ReportLevel, TransferStatus)
    transfer_run: Ledger of submitted transfer jobs and their outcome

Usage:
    from models.base import Operation, JobState
    from models.transfer_run import TransferRun
"""
