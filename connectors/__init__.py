"""
RecordConnection implementations.

Modules:
    rest_client: httpx connection for Salesforce-style REST APIs
                 (paged query, bulk ingest jobs, sObject collections)

Usage:
    from connectors.rest_client import RestRecordConnection

    async with RestRecordConnection(instance_url, access_token) as connection:
        async for page in connection.query("SELECT Id FROM Account"):
            ...
"""
