"""Ownership checks shared by the workflows and the API.

Parents act on their own children (admins on any child); a child acts
only on records assigned to them.
"""

from kidpoints.errors import Forbidden
from kidpoints.models import Child, User

ROLE_ADMIN = "admin"
ROLE_PARENT = "parent"


def is_admin(user: User) -> bool:
    return user.role == ROLE_ADMIN


def ensure_owner(user: User, owner_id: int) -> None:
    """Tasks and rewards belong to the parent who created them."""
    if not is_admin(user) and owner_id != user.id:
        raise Forbidden(f"User {user.id} does not own this record")


def ensure_parent_of(user: User, child: Child) -> None:
    if is_admin(user):
        return
    if child.parent_id != user.id:
        raise Forbidden(f"User {user.id} is not a parent of child {child.id}")


def ensure_child_is(actor_child_id: int, target_child_id: int | None) -> None:
    if target_child_id != actor_child_id:
        raise Forbidden(f"Child {actor_child_id} cannot act for child {target_child_id}")


def ensure_can_view(identity: tuple[str, User | Child], child: Child) -> None:
    """Children see their own records; parents see their children's."""
    kind, actor = identity
    if kind == "child":
        ensure_child_is(actor.id, child.id)
    else:
        ensure_parent_of(actor, child)
