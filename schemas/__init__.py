"""
Pydantic schemas for data validation and serialization.

Schemas:
    transfer: Transfer jobs, progress snapshots, status records and results
    api: Operations API request/response schemas

Usage:
    from schemas.transfer import TransferJob, TransferResult, StatusRecord
    from schemas.api import HealthCheckResponse, TransferRunResponse

Validation:
    TransferJob keeps its state transitions monotonic: a job never moves
    back to an earlier state and cannot change once terminal.
"""
