"""
Permission-scoped filtering of user-owned records.

This is the single gate between the store and the aggregation engine:
members only ever see their own records, admins and superadmins see the
whole household or narrow to one selected member. A member asking for
someone else's data is narrowed to their own records without an error.
"""

import logging
from typing import Iterable, List, Optional, TypeVar

from models import User

logger = logging.getLogger(__name__)

ALL_USERS = "all"

T = TypeVar("T")


def get_effective_user_id(
    actor: User,
    selected_user_id: Optional[str] = None,
    all_sentinel: str = ALL_USERS
) -> Optional[str]:
    """
    Owner id the actor's view is restricted to.

    Args:
        actor: User performing the request
        selected_user_id: Requested owner, ``all_sentinel`` or None
        all_sentinel: Value meaning "every household member"

    Returns:
        The owner id to filter on, or None for no restriction
    """
    if not actor.role.can_view_all():
        if selected_user_id and selected_user_id not in (actor.id, all_sentinel):
            logger.debug("Member %s requested data for %s; narrowing to own records",
                         actor.id, selected_user_id)
        return actor.id

    if not selected_user_id or selected_user_id == all_sentinel:
        return None
    return selected_user_id


def filter_by_user_permissions(
    items: Iterable[T],
    actor: User,
    selected_user_id: Optional[str] = None,
    all_sentinel: str = ALL_USERS
) -> List[T]:
    """
    Narrow ``items`` to what ``actor`` may see.

    Args:
        items: Records carrying a ``user_id`` attribute
        actor: User performing the request
        selected_user_id: Owner chosen by an admin, ``all_sentinel`` or None
        all_sentinel: Value meaning "every household member"

    Returns:
        New list of visible records
    """
    effective = get_effective_user_id(actor, selected_user_id, all_sentinel)
    if effective is None:
        return list(items)
    return [item for item in items if getattr(item, "user_id", None) == effective]


def can_access_user_data(actor: User, owner_id: str) -> bool:
    """True when ``actor`` may read or change records owned by ``owner_id``."""
    return actor.id == owner_id or actor.role.can_manage_others()


def get_selectable_users(actor: User, users: Iterable[User]) -> List[User]:
    """Users an actor may pick in an owner selector: everyone in the household for admins, else only themselves."""
    if not actor.role.can_view_all():
        return [actor]
    return [u for u in users if actor.group_id is None or u.group_id == actor.group_id]
