from typing import Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from mentorchat.models.user import CompanyDocument, UserDocument


class UserRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._collection = db.get_collection("users")
        self._company_collection = db.get_collection("companies")

    async def get_profile(self, user_id: str) -> Optional[UserDocument]:
        user = await self._collection.find_one({"_id": user_id})
        if user:
            user["_id"] = str(user["_id"])
        return user

    async def get_company_name(self, user_id: str) -> Optional[str]:
        company: Optional[CompanyDocument] = await self._company_collection.find_one({"owner_id": user_id}, {"name": 1})
        if not company:
            return None
        return company.get("name") or None
