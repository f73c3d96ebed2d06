"""
Health Check Schemas
Models for system health endpoints
"""
from typing import List
from pydantic import BaseModel


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    providers: List[str]
