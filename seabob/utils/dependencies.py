from typing import Optional
from fastapi import Header

from .logging_config import actor_id_var


def get_actor_id(x_actor_id: Optional[str] = Header(None, max_length=100)) -> Optional[str]:
    """
    Staff/partner label used for audit fields (created_by, updated_by...).
    Identity is established upstream; this only records who acted.
    """
    actor = x_actor_id.strip() if x_actor_id else None
    if actor:
        actor_id_var.set(actor)
    return actor or None
