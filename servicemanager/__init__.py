"""Declarative setup and teardown of Pub/Sub, Cloud Storage and BigQuery resources through pluggable clients, with a configuration access server."""

__version__ = "0.1.0"