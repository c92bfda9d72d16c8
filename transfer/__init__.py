"""
Record transfer engine: extraction, ingestion and status reporting.

This package contains the components that move records between endpoints:

Modules:
    base: RecordConnection and StatusReporter interfaces, callback types
    predicates: Length-bounded filter predicates over large literal sets
    files: CSV record files (append-safe writing, chunked reading)
    runner: Engine choice, run ledger and reporter wiring
    ledger: TransferRun recording
    reporter: Logging StatusReporter

Subpackages:
    extractors: Streaming query extraction into local files
    loaders: Bulk job and direct-call ingestion, status file writer

Architecture:
    Extraction and ingestion are sequential phases of one transfer:

    1. Build bounded filters over known keys (optional)
    2. Extract - Stream query pages from the source into a CSV file
    3. Ingest - Submit the file to the target as one bulk job or as
       bounded synchronous calls, and write one status row per record

Usage:
    from transfer.predicates import build_in_clauses
    from transfer.extractors.query_extractor import QueryExtractor
    from transfer.runner import TransferRunner

Example:
    extractor = QueryExtractor(source_connection)
    for clause in build_in_clauses("Id", account_ids):
        await extractor.extract_to_file(
            f"SELECT Id, Name FROM Account WHERE {clause}",
            "accounts.csv",
            append_to_existing_file=True
        )

    runner = TransferRunner(target_connection)
    result = await runner.ingest_file(
        "Account", Operation.INSERT, "accounts.csv",
        status_file_path="accounts.status.csv"
    )

Error Handling:
    All components raise exceptions from core.exceptions. The engine never
    retries; retries of read calls belong to the connection.
"""
