"""
Built-in profiles and profile lookup.
"""

from copy import deepcopy
from typing import Optional, Protocol

from .exceptions import ValidationError
from .models import Profile, ProfileRecord

BUILTIN_PROFILES: list[Profile] = [
    Profile(
        name="startup",
        description="Balanced checks for common startup naming needs",
        tlds=["com", "io", "dev", "app"],
        registries=["npm", "pypi"],
        handles=["github"],
    ),
    Profile(
        name="minimal",
        description="Minimal domain-only check for quick availability scan",
        tlds=["com"],
    ),
    Profile(
        name="developer",
        description="Developer tool naming with package registries and code hosts",
        tlds=["com", "io", "dev", "app", "sh", "org", "net"],
        registries=["npm", "pypi", "cargo"],
        handles=["github"],
    ),
    Profile(
        name="website",
        description="Traditional website domains for general web presence",
        tlds=["com", "org", "net"],
    ),
    Profile(
        name="web3",
        description="Web3-friendly domains with registry + handle checks",
        tlds=["xyz", "io", "gg"],
        registries=["npm"],
        handles=["github"],
    ),
]


class ProfileStore(Protocol):
    async def get_profile(self, name: str) -> Optional[ProfileRecord]:
        ...


def find_builtin_profile(name: str) -> Optional[Profile]:
    """Case-insensitive lookup; returns a copy the caller may modify."""
    needle = (name or "").strip().lower()
    if not needle:
        return None
    for profile in BUILTIN_PROFILES:
        if profile.name.lower() == needle:
            return deepcopy(profile)
    return None


async def resolve_profile(name: str, store: Optional[ProfileStore] = None) -> Profile:
    """
    Find a profile by name, preferring a stored one over the built-ins.

    Raises:
        ValidationError: If no profile has that name
        PersistenceError: If the store lookup fails
    """
    if store is not None:
        record = await store.get_profile(name)
        if record is not None:
            return record.profile

    profile = find_builtin_profile(name)
    if profile is None:
        raise ValidationError(
            code="unknown_profile",
            message=f"unknown profile: {name}",
            details={"profile": name},
        )
    return profile
