"""Container requests, readiness checks, MySQL/Neo4j/Couchbase setups and Compose stack helpers."""

__version__ = "0.1.0"