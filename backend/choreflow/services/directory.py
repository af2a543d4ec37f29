"""Family member lookups over the document store"""
from typing import List, Optional

from choreflow.database import DocumentStore
from choreflow.models.notification import RecipientRole
from choreflow.models.user import Family, User, UserRole


class FamilyDirectory:
    """Reads users and families; every call goes to the store so data is always fresh"""

    def __init__(self, store: DocumentStore):
        self.store = store

    async def get_user(self, user_id: str) -> Optional[User]:
        data = await self.store.get("users", user_id)
        return User.model_validate({**data, "id": user_id}) if data else None

    async def get_family(self, family_id: str) -> Optional[Family]:
        data = await self.store.get("families", family_id)
        return Family.model_validate({**data, "id": family_id}) if data else None

    async def get_members(self, family_id: str) -> List[User]:
        family = await self.get_family(family_id)
        if family is None:
            return []
        members = []
        for member_id in family.member_ids:
            member = await self.get_user(member_id)
            if member is not None:
                members.append(member)
        return members

    async def get_parents(self, family_id: str) -> List[User]:
        return [member for member in await self.get_members(family_id) if member.role == UserRole.PARENT]

    async def get_push_token(self, user_id: str) -> Optional[str]:
        user = await self.get_user(user_id)
        return user.push_token if user else None

    async def display_name(self, user_id: str, default: str = "Your child") -> str:
        user = await self.get_user(user_id)
        return user.display_name if user and user.display_name else default

    async def resolve_recipients(self, role: RecipientRole, family_id: str, child_id: str) -> List[str]:
        """Turn a rule's recipient role into concrete user ids"""
        recipients: List[str] = []
        if role in (RecipientRole.ASSIGNED_CHILD, RecipientRole.CHILD_AND_PARENTS):
            recipients.append(child_id)
        if role in (RecipientRole.PARENTS, RecipientRole.CHILD_AND_PARENTS):
            recipients.extend(parent.id for parent in await self.get_parents(family_id) if parent.id not in recipients)
        return recipients
