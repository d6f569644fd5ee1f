from typing import Optional, TypedDict


class UserDocument(TypedDict, total=False):

    _id: str
    first_name: str
    last_name: str
    role: str
    email: Optional[str]
    profile_image_url: Optional[str]


class CompanyDocument(TypedDict, total=False):

    _id: str
    owner_id: str
    name: str
