"""External collaborators for pg-sync: database, bulk transfer, notifications."""

from pg_sync.connectors.postgres import PostgresConnector
from pg_sync.connectors.bulk_transfer import BulkTransferService
from pg_sync.connectors.notifier import WebhookNotifier

__all__ = ["PostgresConnector", "BulkTransferService", "WebhookNotifier"]
