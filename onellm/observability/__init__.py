"""
Observability module for OneLLM.

Structured logging only: JSON in production, colored text in
development, with a per-call ``call_id`` on every record.
"""
