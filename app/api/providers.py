from fastapi import APIRouter, Depends, HTTPException

from app.core.logger import logger
from app.core.security import require_role
from app.crud import user_crud
from app.db.client import get_db
from app.models.booking import CapacityUpdateRequest

router = APIRouter(
    prefix="/providers",
    tags=["Providers"]
)


@router.put("/me/capacity")
def update_capacity(
        capacity: CapacityUpdateRequest,
        current_user: dict = Depends(require_role(["barber"])),
        db=Depends(get_db)
):
    """Change the daily booking limit; existing bookings are left as they are"""
    try:
        provider = user_crud.set_daily_capacity(db, current_user["_id"], capacity.max_appointments_per_day)
        if not provider:
            raise HTTPException(status_code=404, detail="Barber not found")
        logger.info(f"Barber {current_user['_id']} set daily capacity to {capacity.max_appointments_per_day}")
        return {
            "id": str(provider["_id"]),
            "max_appointments_per_day": provider["max_appointments_per_day"],
        }
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error updating capacity for barber {current_user['_id']}: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to update capacity")


@router.get("/{barber_id}/capacity")
def get_capacity(barber_id: str, db=Depends(get_db)):
    provider = user_crud.get_user(db, barber_id)
    if not provider or provider.get("role") != "barber":
        raise HTTPException(status_code=404, detail="Barber not found")
    return {"id": barber_id, "max_appointments_per_day": user_crud.daily_capacity(provider)}
