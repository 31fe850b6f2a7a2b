"""
Pagination utilities
"""

from pydantic import BaseModel, Field

class LimitOffsetParams(BaseModel):
    """Limit/offset pagination parameters"""
    limit: int = Field(50, ge=1, le=100, description="Page size")
    offset: int = Field(0, ge=0, description="Rows to skip")
