from typing import Optional

from pydantic import BaseModel


class UserProfile(BaseModel):

    id: str
    first_name: str
    last_name: str
    role: str = ""
    profile_image_url: Optional[str] = ""

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class RecipientInfo(BaseModel):

    profile: Optional[UserProfile] = None
    # "" once resolved with no company
    company_name: str = ""
