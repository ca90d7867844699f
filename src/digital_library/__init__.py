"""
Digital Library MCP Server Package.

A catalog of books with copy-level lending and per-page annotations, exposed
to MCP clients as tools.

Key Components:
- models: Pydantic models for data validation and serialization
- database: SQLAlchemy schema, sessions and repositories
- config: Configuration management with pydantic-settings
- tools: MCP tools for the catalog, circulation and annotations
"""

__version__ = "0.1.0"

__all__ = [
    "__version__",
]
