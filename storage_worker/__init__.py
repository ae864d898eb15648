"""
Storage Worker - a session artifact store in front of S3-compatible storage.

This package contains the complete service:
- core: Framework-agnostic naming and transfer logic
- infrastructure: Object store integrations
- api: FastAPI routes and dependencies
- config: Application configuration
- client: HTTP client used by other workers
"""

__version__ = "0.1.0"
