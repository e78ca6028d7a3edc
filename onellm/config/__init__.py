"""
Configuration for OneLLM clients.

- schema: pydantic models for a YAML settings file
- loader: read, expand ``${ENV}`` references and validate
"""
