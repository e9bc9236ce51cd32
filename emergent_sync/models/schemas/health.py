"""
Health Check Schemas
"""
from pydantic import BaseModel


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    database: str
    queue: str
