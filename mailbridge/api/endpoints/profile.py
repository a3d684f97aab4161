from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from mailbridge.api.deps import CurrentUser, get_current_user
from mailbridge.database import get_db
from mailbridge.services import user_service

router = APIRouter(tags=["Profile"])


@router.get("/profile")
def get_profile(
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """The signed-in user with their linked Gmail credential (tokens omitted)."""
    user = user_service.get_user_by_id(db, current_user.id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return {"user": user.to_dict(include_credentials=True)}
