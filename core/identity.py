"""
Identity Resolver - social handle / pay tag -> Profile with a payable address.

Fails safe: zero matches, several matches, or a profile without any address
all resolve to None. Never guesses between candidates.
"""

import logging
from typing import Optional

from core.models import Profile

logger = logging.getLogger("monibot.identity")


class IdentityResolver:

    def __init__(self, datastore):
        self._store = datastore

    async def resolve(self, handle_or_tag: str) -> Optional[Profile]:
        """Match on social handle OR pay tag."""
        key = (handle_or_tag or "").strip().lstrip("@")
        if not key:
            return None
        return self._pick(key, await self._store.find_profiles(key))

    async def resolve_handle(self, handle: str) -> Optional[Profile]:
        """Match on social handle only (post authors)."""
        key = (handle or "").strip().lstrip("@")
        if not key:
            return None
        return self._pick(key, await self._store.find_profiles_by_handle(key))

    @staticmethod
    def _pick(key: str, candidates: list[Profile]) -> Optional[Profile]:
        if len(candidates) != 1:
            if candidates:
                logger.warning(f"Ambiguous identity @{key}: {len(candidates)} profiles match")
            return None
        profile = candidates[0]
        if not profile.pay_address:
            logger.warning(f"Profile {profile.profile_id} (@{key}) has no payable address")
            return None
        return profile
