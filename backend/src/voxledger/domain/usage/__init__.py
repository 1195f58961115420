"""Usage ingestion, ledger aggregation and snapshots."""
