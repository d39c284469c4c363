from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session
from typing import Optional

from ..database import get_db
from ..schemas.links import LinkCreate, LinkResponse
from ..services.reservation import create_booking_link, register_link_visit
from ..utils.dependencies import get_actor_id
from ..utils.rate_limiter import limiter, get_rate_limit

router = APIRouter(prefix="/api/links", tags=["Enlaces"])


@router.post("", response_model=LinkResponse, status_code=status.HTTP_201_CREATED)
def create_link(
    data: LinkCreate,
    db: Session = Depends(get_db),
    actor: Optional[str] = Depends(get_actor_id)
):
    """Create a shareable booking link, optionally attributed to a partner."""
    link = create_booking_link(
        db,
        created_by=actor,
        single_use=data.single_use,
        partner_id=data.partner_id,
        partner_role=data.partner_role.value if data.partner_role else None,
    )
    return LinkResponse.model_validate(link)


@router.get("/{token}", response_model=LinkResponse)
@limiter.limit(get_rate_limit("link_visit"))
def visit_link(request: Request, token: str, db: Session = Depends(get_db)):
    """Open a link: counts the visit, 404/410 when it cannot be used."""
    link = register_link_visit(db, token)
    return LinkResponse.model_validate(link)
