"""
FastAPI routes: user profiles and emergency contacts.

Endpoints:
    PUT /api/v1/users/{user_id}   — create or replace a profile
    GET /api/v1/users/{user_id}   — profile, push registration and preferences
"""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from backend.app.dependencies import Platform, get_platform
from backend.app.notifications.recipients import EmergencyContact, UserProfile

router = APIRouter(prefix="/api/v1/users", tags=["users"])


class EmergencyContactInput(BaseModel):
    name: str = Field(..., min_length=1, examples=["Asha"])
    relationship: str = Field("", examples=["sister"])
    phone: Optional[str] = Field(None, examples=["+919876543210"])
    email: Optional[str] = Field(None, examples=["asha@example.com"])


class ProfileRequest(BaseModel):
    name: str = Field("", examples=["Ravi"])
    email: Optional[str] = None
    phone_number: Optional[str] = None
    emergency_contacts: List[EmergencyContactInput] = Field(default_factory=list)


@router.put("/{user_id}", summary="Create or replace a user profile")
async def upsert_profile(user_id: str, request: ProfileRequest, platform: Platform = Depends(get_platform)):
    profile = platform.directory.upsert(UserProfile(
        user_id=user_id,
        name=request.name,
        email=request.email,
        phone_number=request.phone_number,
        emergency_contacts=[
            EmergencyContact(name=c.name, relationship=c.relationship, phone=c.phone, email=c.email)
            for c in request.emergency_contacts
        ],
    ))
    return {"success": True, "profile": profile.to_dict()}


@router.get("/{user_id}", summary="Get a user profile")
async def get_profile(user_id: str, platform: Platform = Depends(get_platform)):
    profile = await platform.notifications.profile(user_id)
    registration = platform.registry.get(user_id)
    return {
        "success": True,
        "profile": profile.to_dict(),
        "push": registration.to_dict() if registration else None,
        "preferences": platform.registry.preferences(user_id),
    }
