"""
Reports API package for the FastAPI backend.

Modules:
- config: environment settings
- db: PostgreSQL connection manager + statement execution
- query_adapter: declarative operations (bind, execute, shape)
- operations: one operation per database-backed endpoint
- tokens / auth_utils: JWT tokens, password hashing and auth dependencies
- schemas: Pydantic models for the REST API
"""
