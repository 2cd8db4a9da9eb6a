"""User service: owners and their monthly credit budget."""

import logging
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlmodel import select

from agent_engine.core.database import get_session
from agent_engine.core.errors import (
    InsufficientCreditsError,
    NotFoundError,
    RecordAlreadyExistsError,
)
from agent_engine.models import Task, User

logger = logging.getLogger(__name__)


def _as_uuid(value: UUID | str) -> UUID:
    return value if isinstance(value, UUID) else UUID(str(value))


class UserService:
    """Service for users and credit accounting."""

    @staticmethod
    def create_user(email: str, monthly_credits: int = 1000) -> User:
        """Create a new user.

        Raises:
            RecordAlreadyExistsError: If the email is already registered
        """
        try:
            with get_session() as session:
                user = User(email=email, monthly_credits=monthly_credits)
                session.add(user)
                session.commit()
                session.refresh(user)
                return user
        except IntegrityError as e:
            raise RecordAlreadyExistsError(
                f"User with email {email} already exists"
            ) from e

    @staticmethod
    def get_user_by_id(user_id: UUID | str) -> User:
        """Get user by ID."""
        with get_session() as session:
            statement = select(User).where(User.id == _as_uuid(user_id))
            user = session.execute(statement).scalar_one_or_none()

            if user is None:
                raise NotFoundError(f"User with id {user_id} not found")

            return user

    @staticmethod
    def reserve_credits(user_id: UUID | str, task_id: UUID | str, amount: int) -> int:
        """Hold ``amount`` credits of the owner's budget for a task.

        The hold is a single conditional UPDATE, so concurrent tasks of the
        same owner cannot jointly exceed the remaining budget. A hold left by
        an earlier delivery of the same task is replaced.

        Returns:
            Credits still available to the owner after the hold

        Raises:
            NotFoundError: If the user or task does not exist
            InsufficientCreditsError: If the remaining budget is too small
        """
        user_uuid = _as_uuid(user_id)
        with get_session() as session:
            task = session.get(Task, _as_uuid(task_id))
            if task is None:
                raise NotFoundError(f"Task with id {task_id} not found")
            if session.get(User, user_uuid) is None:
                raise NotFoundError(f"User with id {user_id} not found")

            UserService._release(session, task)

            statement = (
                update(User)
                .where(
                    User.id == user_uuid,
                    User.monthly_credits - User.credits_used - User.credits_reserved
                    >= amount,
                )
                .values(credits_reserved=User.credits_reserved + amount)
                .execution_options(synchronize_session=False)
            )
            if session.execute(statement).rowcount == 0:
                user = session.get(User, user_uuid, populate_existing=True)
                raise InsufficientCreditsError(amount, user.credits_available)

            task.credits_reserved = amount
            session.add(task)
            session.commit()

            user = session.get(User, user_uuid, populate_existing=True)
            logger.info(
                f"Reserved {amount} credits for task {task.id} "
                f"({user.credits_available} left)"
            )
            return user.credits_available

    @staticmethod
    def release_reservation(task_id: UUID | str) -> None:
        """Drop any hold a task still has on its owner's budget."""
        with get_session() as session:
            task = session.get(Task, _as_uuid(task_id))
            if task is None:
                raise NotFoundError(f"Task with id {task_id} not found")
            UserService._release(session, task)

    @staticmethod
    def _release(session: Session, task: Task) -> None:
        if not task.credits_reserved:
            return
        session.execute(
            update(User)
            .where(User.id == task.user_id)
            .values(credits_reserved=User.credits_reserved - task.credits_reserved)
            .execution_options(synchronize_session=False)
        )
        task.credits_reserved = 0
        session.add(task)

    @staticmethod
    def settle(session: Session, task: Task, credits_used: int) -> int:
        """Replace a task's hold with the credits it actually consumed.

        Runs inside the caller's session so the charge commits together with
        the task's terminal state. Settling twice only charges the difference.

        Returns:
            Credits newly charged to the owner
        """
        charge = max(credits_used - task.credits_charged, 0)
        UserService._release(session, task)
        if charge:
            session.execute(
                update(User)
                .where(User.id == task.user_id)
                .values(credits_used=User.credits_used + charge)
                .execution_options(synchronize_session=False)
            )
        task.credits_charged = max(credits_used, task.credits_charged)
        session.add(task)
        return charge
