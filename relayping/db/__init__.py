from relayping.db.client import DatabaseClient

__all__ = ["DatabaseClient"]
