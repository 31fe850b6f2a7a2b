"""
Referral schemas
"""

from pydantic import BaseModel, Field
from typing import List
from datetime import datetime

class ReferralCodeResponse(BaseModel):
    code: str
    is_active: bool

class ApplyReferralRequest(BaseModel):
    code: str = Field(..., min_length=4, max_length=16)

class ApplyReferralResponse(BaseModel):
    message: str

class ReferredUser(BaseModel):
    username: str
    role: str

class ReferralEntry(BaseModel):
    referred_user: ReferredUser
    completed_count: int
    commissions_remaining: int
    created_at: datetime

class ReferralListResponse(BaseModel):
    referrals: List[ReferralEntry]
