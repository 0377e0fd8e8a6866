import logging
import re
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile

import config
import models
from auth import as_datetime, public_user
from database import get_db, transaction, utcnow
from utils import uploads
from utils.dependencies import admin_required, get_current_user
from utils.loan_status import APPROVED, LATE
from utils.lookups import get_or_404, loan_views

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["Users"])


async def active_admin_count(db) -> int:
    return await db.users.count_documents({"role": "admin", "status": "active"})


async def is_last_admin(db, user: dict) -> bool:
    if user.get("role") != "admin" or user.get("status", "active") != "active":
        return False
    return await active_admin_count(db) <= 1


# ---------- Own profile ----------
@router.get("/profile", response_model=models.UserResponse)
async def get_profile(current_user=Depends(get_current_user)):
    return public_user(current_user)


@router.put("/profile", response_model=models.UserResponse)
async def update_profile(profile: models.ProfileUpdate, current_user=Depends(get_current_user), db=Depends(get_db)):
    changes = {
        "name": profile.name.strip(),
        "address": profile.address.strip(),
        "phone": profile.phone,
        "birth_date": as_datetime(profile.birth_date),
        "updated_at": utcnow(),
    }
    await db.users.update_one({"id": current_user["id"]}, {"$set": changes})
    logger.info("User %s updated their profile", current_user["id"])
    return public_user({**current_user, **changes})


@router.post("/profile/image")
async def upload_profile_image(file: UploadFile = File(...), current_user=Depends(get_current_user),
                               db=Depends(get_db)):
    data = await file.read()
    problem = uploads.check_image(file.content_type, data, config.MAX_PROFILE_IMAGE_SIZE)
    if problem:
        raise HTTPException(status_code=400, detail=problem)

    url = uploads.save_bytes(data, file.content_type, subdir="profiles", prefix=str(current_user["id"]))
    try:
        await db.users.update_one(
            {"id": current_user["id"]},
            {"$set": {"profile_image": url, "updated_at": utcnow()}},
        )
    except Exception:
        logger.exception("Failed to save profile image for user %s", current_user["id"])
        uploads.remove_upload(url)
        raise HTTPException(status_code=500, detail="Failed to update profile image")

    logger.info("User %s uploaded a new profile image", current_user["id"])
    return {
        "success": True,
        "profileImage": url,
        "user": public_user({**current_user, "profile_image": url}).model_dump(by_alias=True, mode="json"),
    }


# ---------- Admin ----------
@router.get("", response_model=list[models.UserResponse])
async def list_users(search: Optional[str] = None, admin=Depends(admin_required), db=Depends(get_db)):
    """Get all users, optionally matching name, email or member ID (Admin only)"""
    query = {}
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        query = {"$or": [{"name": pattern}, {"email": pattern}, {"member_id": pattern}]}

    users = []
    async for u in db.users.find(query).sort([("created_at", -1), ("id", -1)]):
        users.append(public_user(u))
    return users


@router.get("/{user_id}", response_model=models.UserResponse)
async def get_user(user_id: int, admin=Depends(admin_required), db=Depends(get_db)):
    """Get a specific user by ID (Admin only)"""
    user = await get_or_404(db.users, user_id, "User")
    return public_user(user)


@router.get("/{user_id}/loans", response_model=list[models.LoanResponse])
async def get_user_loans(user_id: int, admin=Depends(admin_required), db=Depends(get_db)):
    """Get all loan records for a specific user (Admin only)"""
    await get_or_404(db.users, user_id, "User")
    loans = [loan async for loan in db.bookloans.find({"user_id": user_id}).sort("created_at", -1)]
    return await loan_views(db, loans)


@router.put("", response_model=models.UserResponse)
async def update_user(update: models.UserAdminUpdate, admin=Depends(admin_required), db=Depends(get_db)):
    """Change a user's name, role or status (Admin only)"""
    user = await get_or_404(db.users, update.id, "User")

    losing_admin = update.role != "admin" or update.status != "active"
    if losing_admin and await is_last_admin(db, user):
        logger.warning("Admin %s tried to demote or deactivate the last admin %s", admin["id"], user["id"])
        raise HTTPException(status_code=400, detail="Cannot remove admin role from the last admin user")

    changes = {"name": update.name, "role": update.role, "status": update.status, "updated_at": utcnow()}
    await db.users.update_one({"id": update.id}, {"$set": changes})
    logger.info(
        "User %s updated by admin %s: role %s -> %s, status %s -> %s",
        user["id"], admin["id"], user.get("role"), update.role, user.get("status"), update.status,
    )
    return public_user({**user, **changes})


@router.delete("")
async def delete_user(id: int, current_admin=Depends(admin_required), db=Depends(get_db)):
    """Delete a user together with their loans and wishlist (Admin only)"""
    user_to_delete = await get_or_404(db.users, id, "User")

    if await is_last_admin(db, user_to_delete):
        raise HTTPException(status_code=400, detail="Cannot delete the last admin user")

    if id == current_admin["id"]:
        raise HTTPException(status_code=400, detail="You cannot delete your own account")

    books_out = await db.bookloans.count_documents({"user_id": id, "status": {"$in": [APPROVED, LATE]}})
    if books_out:
        raise HTTPException(
            status_code=400,
            detail="Cannot delete user with borrowed books. Please ensure all books are returned first."
        )

    async with transaction(db) as session:
        loans = await db.bookloans.delete_many({"user_id": id}, session=session)
        await db.wishlist.delete_many({"user_id": id}, session=session)
        await db.users.delete_one({"id": id}, session=session)

    logger.info(
        "User %s (%s) deleted by admin %s along with %d loans",
        id, user_to_delete["email"], current_admin["id"], loans.deleted_count,
    )
    return {
        "success": True,
        "message": f"User '{user_to_delete['name']}' ({user_to_delete['email']}) has been deleted successfully",
        "deletedUserId": id,
    }
