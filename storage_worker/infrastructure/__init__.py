"""
Infrastructure layer - external service integrations.

- storage: Object storage (MinIO / S3-compatible)

These wrappers translate between backend formats and our domain models.
"""
