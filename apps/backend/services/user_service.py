"""
Catalog API - User Service
==========================
User management and credential verification.
Password hashes never leave this module.
"""

from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError

from database import Company, Database, EntityStatus, User
from exceptions import (
    AuthenticationError,
    CatalogBaseException,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from logging_config import get_logger
from schemas import LoginRequest, PageRequest, UserCreate, UserUpdate
from security import burn_verification, hash_password, verify_password
from services.gateway import TableGateway, database_error, nest_company
from services.pagination import paginate

logger = get_logger(__name__)


def user_gateway(database: Database) -> TableGateway:
    return TableGateway(
        database,
        User,
        columns=[
            User.id,
            User.username,
            User.first_name,
            User.last_name,
            User.email,
            User.mobile,
            User.role_id,
            User.status,
            User.company_id,
            User.created_at,
            Company.trade_name.label("company_trade_name"),
        ],
        sortable={
            "id": User.id,
            "username": User.username,
            "first_name": User.first_name,
            "last_name": User.last_name,
            "email": User.email,
            "role_id": User.role_id,
            "status": User.status,
            "created_at": User.created_at,
        },
        search_fields=[User.username, User.first_name, User.last_name, User.email],
        joins=[(Company, User.company_id == Company.id)],
        label="user",
    )


class UserService:
    """
    Service for managing users.

    Args:
        database: Database handle
        bcrypt_rounds: Cost factor for new password hashes
    """

    def __init__(self, database: Database, bcrypt_rounds: int = 12, gateway: Optional[TableGateway] = None):
        self.database = database
        self.bcrypt_rounds = bcrypt_rounds
        self.gateway = gateway or user_gateway(database)

    async def list(self, request: PageRequest) -> Tuple[List[Dict[str, Any]], Dict[str, Any]]:
        rows, pagination = await paginate(self.gateway, request)
        return [nest_company(row) for row in rows], pagination

    async def get(self, user_id: int) -> Dict[str, Any]:
        row = await self.gateway.find_one(user_id)
        if row is None:
            raise NotFoundError("User", user_id)
        return nest_company(row)

    async def _check_unique(
        self,
        session,
        username: Optional[str],
        email: Optional[str],
        exclude_id: Optional[int] = None,
    ) -> None:
        clauses = []
        if username:
            clauses.append(User.username == username)
        if email:
            clauses.append(User.email == email)
        if not clauses:
            return

        stmt = select(User.username, User.email).where(or_(*clauses))
        if exclude_id is not None:
            stmt = stmt.where(User.id != exclude_id)

        existing = (await session.execute(stmt)).first()
        if existing is not None:
            fields = []
            if username and existing.username == username:
                fields.append("username")
            if email and existing.email == email:
                fields.append("email")
            raise ConflictError("A user with this username or email already exists", fields=fields)

    async def _check_company(self, session, company_id: Optional[int]) -> None:
        if company_id is None:
            return
        if await session.get(Company, company_id) is None:
            raise ValidationError("Company does not exist", field="company_id", value=company_id)

    async def create(self, payload: UserCreate) -> Dict[str, Any]:
        values = payload.model_dump()
        password = values.pop("password")
        values["password_hash"] = await hash_password(password, rounds=self.bcrypt_rounds)

        try:
            async with self.database.session() as session:
                await self._check_unique(session, values["username"], values["email"])
                await self._check_company(session, values.get("company_id"))

                user = User(**values)
                session.add(user)
                await session.commit()
                await session.refresh(user)
        except SQLAlchemyError as e:
            raise self._database_error("create", e) from e

        logger.info("User created", user_id=user.id, username=user.username)
        return user.to_dict()

    async def update(self, user_id: int, payload: UserUpdate) -> Dict[str, Any]:
        values = payload.model_dump(exclude_unset=True)
        if values.get("password"):
            values["password_hash"] = await hash_password(values.pop("password"), rounds=self.bcrypt_rounds)
        else:
            values.pop("password", None)

        try:
            async with self.database.session() as session:
                user = await session.get(User, user_id)
                if user is None:
                    raise NotFoundError("User", user_id)

                username = values.get("username") if values.get("username") != user.username else None
                email = values.get("email") if values.get("email") != user.email else None
                await self._check_unique(session, username, email, exclude_id=user_id)
                if "company_id" in values:
                    await self._check_company(session, values["company_id"])

                for key, value in values.items():
                    setattr(user, key, value)
                await session.commit()
                await session.refresh(user)
        except SQLAlchemyError as e:
            raise self._database_error("update", e) from e

        logger.info("User updated", user_id=user_id, fields=sorted(values))
        return user.to_dict()

    async def soft_delete(self, user_id: int) -> Dict[str, Any]:
        try:
            async with self.database.session() as session:
                user = await session.get(User, user_id)
                if user is None:
                    raise NotFoundError("User", user_id)
                user.status = EntityStatus.INACTIVE.value
                await session.commit()
                await session.refresh(user)
        except SQLAlchemyError as e:
            raise self._database_error("delete", e) from e

        logger.info("User deactivated", user_id=user_id)
        return user.to_dict()

    async def login(self, credentials: LoginRequest) -> Dict[str, Any]:
        """
        Verify credentials of an active user.

        ``username`` matches either the username or the email address.
        Unknown users and wrong passwords fail identically.

        Raises:
            AuthenticationError: Invalid credentials or inactive user
        """
        stmt = (
            select(User)
            .where(or_(User.username == credentials.username, User.email == credentials.username))
            .where(User.status == EntityStatus.ACTIVE.value)
        )
        try:
            async with self.database.session() as session:
                user = (await session.execute(stmt)).scalars().first()
        except SQLAlchemyError as e:
            raise self._database_error("login", e) from e

        if user is None:
            await burn_verification(credentials.password, rounds=self.bcrypt_rounds)
            logger.warning("Login failed", reason="unknown_user")
            raise AuthenticationError()

        if not await verify_password(credentials.password, user.password_hash):
            logger.warning("Login failed", reason="bad_password", user_id=user.id)
            raise AuthenticationError()

        logger.info("Login succeeded", user_id=user.id)
        return user.to_dict()

    async def stats(self) -> Dict[str, Any]:
        active = User.status == EntityStatus.ACTIVE.value
        try:
            async with self.database.session() as session:
                total = (await session.execute(
                    select(func.count(User.id)).where(active)
                )).scalar() or 0
                by_status = (await session.execute(
                    select(User.status, func.count(User.id).label("count"))
                    .group_by(User.status)
                    .order_by(User.status)
                )).mappings().all()
                by_role = (await session.execute(
                    select(User.role_id, func.count(User.id).label("count"))
                    .where(active)
                    .group_by(User.role_id)
                    .order_by(User.role_id)
                )).mappings().all()
        except SQLAlchemyError as e:
            raise self._database_error("stats", e) from e

        return {
            "total_users": int(total),
            "by_status": [dict(row) for row in by_status],
            "by_role": [dict(row) for row in by_role],
        }

    def _database_error(self, operation: str, error: Exception) -> CatalogBaseException:
        return database_error("user", operation, error)
