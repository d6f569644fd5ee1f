from typing import Dict, Iterable, List, Optional

from mentorchat.schemas.profile import UserProfile


class ProfileCache:
    """Last-known counterpart profiles for one session.

    Company names distinguish "not fetched" (absent) from "fetched, none
    found" (empty string); only the former triggers a fetch.
    """

    def __init__(self) -> None:
        self._profiles: Dict[str, UserProfile] = {}
        self._company_names: Dict[str, str] = {}

    def get(self, user_id: str) -> Optional[UserProfile]:
        return self._profiles.get(user_id)

    def put(self, user_id: str, profile: UserProfile) -> None:
        self._profiles[user_id] = profile

    def get_company_name(self, user_id: str) -> Optional[str]:
        return self._company_names.get(user_id)

    def put_company_name(self, user_id: str, name: Optional[str]) -> None:
        self._company_names[user_id] = name or ""

    def missing(self, user_ids: Iterable[str]) -> List[str]:
        """Ids (deduplicated, in order) whose profile or company name is unknown."""
        result: List[str] = []
        for user_id in user_ids:
            if not user_id or user_id in result:
                continue
            if user_id not in self._profiles or user_id not in self._company_names:
                result.append(user_id)
        return result

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._profiles

    def __len__(self) -> int:
        return len(self._profiles)
