# src/employee_portal_bff/session_data.py

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, model_validator


class PortalUser(BaseModel):
    """Minimal identity returned by the upstream login exchange."""
    id: int
    nama: str


class SessionData(BaseModel):
    """
    Represents the data stored server-side for a user session.
    Only a unique session ID will be stored in the browser cookie.
    """
    token: Optional[str] = None
    user: Optional[PortalUser] = None
    expires_at: Optional[datetime] = None  # Stamped by the session store on save

    @model_validator(mode="after")
    def user_requires_token(self) -> "SessionData":
        if self.user is not None and not self.token:
            raise ValueError("A session user cannot be stored without a token.")
        return self

    @property
    def is_authenticated(self) -> bool:
        return bool(self.token)

    def profile(self) -> Optional[dict]:
        """User profile as the frontend consumes it: {id, nama, token}."""
        if not self.user or not self.token:
            return None
        return {"id": self.user.id, "nama": self.user.nama, "token": self.token}
