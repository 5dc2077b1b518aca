"""Transaction ingestion."""

from txn_monitoring.ingest.pipeline import ingest_transaction, validate_transaction

__all__ = ["ingest_transaction", "validate_transaction"]
