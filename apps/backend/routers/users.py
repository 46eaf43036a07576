"""
Users Router
============
REST API endpoints for user management and credential verification.

Endpoints:
- GET    /api/v1/users          - List users (paginated, searchable)
- GET    /api/v1/users/stats    - Aggregate statistics
- POST   /api/v1/users/login    - Verify credentials (stricter rate limit)
- GET    /api/v1/users/{id}     - Get single user
- POST   /api/v1/users          - Create user
- PUT    /api/v1/users/{id}     - Update user
- DELETE /api/v1/users/{id}     - Deactivate user (soft delete)
"""

from fastapi import APIRouter, Depends

from dependencies import enforce_login_rate_limit, get_user_service, page_request, parse_id
from schemas import LoginRequest, PageRequest, UserCreate, UserUpdate
from services.user_service import UserService

router = APIRouter()


@router.get("")
async def list_users(
    request: PageRequest = Depends(page_request),
    service: UserService = Depends(get_user_service),
):
    """
    List users with their company summary.

    ``search`` matches username, first name, last name and email.
    """
    rows, pagination = await service.list(request)
    return {"success": True, "data": rows, "pagination": pagination}


@router.get("/stats")
async def user_stats(service: UserService = Depends(get_user_service)):
    return {"success": True, "data": await service.stats()}


@router.post("/login", dependencies=[Depends(enforce_login_rate_limit)])
async def login(credentials: LoginRequest, service: UserService = Depends(get_user_service)):
    """
    Verify a username (or email) and password.

    Only active users can log in. No session or token is issued.
    """
    user = await service.login(credentials)
    return {"success": True, "message": "Login successful", "data": user}


@router.get("/{user_id}")
async def get_user(user_id: str, service: UserService = Depends(get_user_service)):
    user = await service.get(parse_id(user_id, "user"))
    return {"success": True, "data": user}


@router.post("", status_code=201)
async def create_user(payload: UserCreate, service: UserService = Depends(get_user_service)):
    user = await service.create(payload)
    return {"success": True, "message": "User created successfully", "data": user}


@router.put("/{user_id}")
async def update_user(
    user_id: str,
    payload: UserUpdate,
    service: UserService = Depends(get_user_service),
):
    """Update a user. A new password is hashed before storage."""
    user = await service.update(parse_id(user_id, "user"), payload)
    return {"success": True, "message": "User updated successfully", "data": user}


@router.delete("/{user_id}")
async def delete_user(user_id: str, service: UserService = Depends(get_user_service)):
    user = await service.soft_delete(parse_id(user_id, "user"))
    return {"success": True, "message": "User deactivated successfully", "data": user}
