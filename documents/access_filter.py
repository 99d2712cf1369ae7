"""
Document visibility: group membership through accessGroups, or a designated
full-access capability that skips the group check entirely.
"""

from typing import Iterable, List, Optional, Sequence, TypeVar

from loguru import logger

from auth.capabilities import CapabilityLike, CapabilityName, CapabilitySet

T = TypeVar("T")

DEFAULT_FULL_ACCESS = (CapabilityName.ADMIN_ACCESS, CapabilityName.DOCUMENT_FULL_ACCESS)


def _access_groups(document) -> Sequence[str]:
    if isinstance(document, dict):
        groups = document.get("accessGroups", document.get("access_groups"))
    else:
        groups = getattr(document, "access_groups", None)
    return groups or ()


def _group_name(user) -> Optional[str]:
    if user is None:
        return None
    if isinstance(user, dict):
        return user.get("group_name")
    return getattr(user, "group_name", None)


def _user_id(user) -> Optional[str]:
    if user is None:
        return None
    if isinstance(user, dict):
        return user.get("user_id")
    return getattr(user, "user_id", None)


class AccessFilter:
    """
    Never raises for a missing capability or group; invisibility is just
    a False.
    """

    def __init__(self, resolver, full_access_capabilities: Iterable[CapabilityLike] = DEFAULT_FULL_ACCESS):
        self.resolver = resolver
        self.full_access_capabilities = [CapabilityName.require(c) for c in full_access_capabilities]

    def has_full_access(self, capabilities: CapabilitySet) -> bool:
        return capabilities.has_any(self.full_access_capabilities)

    def _visible(self, group_name: Optional[str], full_access: bool, document) -> bool:
        if full_access:
            return True
        if not group_name:
            return False
        return group_name in _access_groups(document)

    def is_visible(self, user, document, capabilities: Optional[CapabilitySet] = None) -> bool:
        if capabilities is None:
            capabilities = self.resolver.resolve(_user_id(user))
        return self._visible(_group_name(user), self.has_full_access(capabilities), document)

    def filter_visible(self, user, documents: Iterable[T], capabilities: Optional[CapabilitySet] = None) -> List[T]:
        """Visible subset of `documents`, in input order; capabilities resolved once"""
        if capabilities is None:
            capabilities = self.resolver.resolve(_user_id(user))
        full_access = self.has_full_access(capabilities)
        group_name = _group_name(user)

        documents = list(documents)
        visible = [doc for doc in documents if self._visible(group_name, full_access, doc)]
        logger.debug(
            f"[ACCESS] {len(visible)}/{len(documents)} documents visible to {_user_id(user)} "
            f"(group={group_name}, full_access={full_access})"
        )
        return visible

    def prune_tree(self, user, node, capabilities: Optional[CapabilitySet] = None):
        """Drop invisible children (and their subtrees) from a DocumentNode in place"""
        if capabilities is None:
            capabilities = self.resolver.resolve(_user_id(user))
        full_access = self.has_full_access(capabilities)
        group_name = _group_name(user)

        stack = [node]
        while stack:
            current = stack.pop()
            current.children = [c for c in current.children if self._visible(group_name, full_access, c)]
            stack.extend(current.children)
        return node
