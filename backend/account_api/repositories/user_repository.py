"""User repository - persistence for user records"""

from typing import Optional

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from account_api.models.user import User


class UserRepository:
    """
    Data access for the users table

    Uniqueness of username and email is enforced by the table's unique
    constraints; ``exists_with`` is only a pre-check.
    """

    def __init__(self, session: Session):
        """
        Args:
            session: SQLAlchemy session bound to the current request
        """
        self.session = session

    def get_by_id(self, user_id: int) -> Optional[User]:
        return self.session.get(User, user_id)

    def get_by_email(self, email: str) -> Optional[User]:
        return self.session.query(User).filter(User.email == email).first()

    def get_by_username(self, username: str) -> Optional[User]:
        return self.session.query(User).filter(User.username == username).first()

    def find_by_identifier(
        self,
        email: Optional[str] = None,
        username: Optional[str] = None
    ) -> Optional[User]:
        """
        Find a user matching either the email or the username

        Args:
            email: Normalized email, or None
            username: Normalized username, or None

        Returns:
            Matching user or None
        """
        conditions = []
        if email:
            conditions.append(User.email == email)
        if username:
            conditions.append(User.username == username)
        if not conditions:
            return None
        return self.session.query(User).filter(or_(*conditions)).first()

    def exists_with(
        self,
        username: Optional[str] = None,
        email: Optional[str] = None,
        exclude_id: Optional[int] = None
    ) -> bool:
        """Check whether another user already holds the username or email"""
        conditions = []
        if username:
            conditions.append(User.username == username)
        if email:
            conditions.append(User.email == email)
        if not conditions:
            return False

        query = self.session.query(User.id).filter(or_(*conditions))
        if exclude_id is not None:
            query = query.filter(User.id != exclude_id)
        return query.first() is not None

    def create(self, **fields) -> User:
        """
        Insert a new user

        Raises:
            sqlalchemy.exc.IntegrityError: On a unique constraint violation
        """
        user = User(**fields)
        self.session.add(user)
        try:
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        self.session.refresh(user)
        return user

    def save(self, user: User) -> User:
        """Persist pending changes on an already loaded user"""
        self.session.add(user)
        try:
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        self.session.refresh(user)
        return user

    def set_refresh_token(self, user_id: int, refresh_token: Optional[str]) -> bool:
        """
        Overwrite the stored refresh token in a single statement

        Returns:
            True if a user row was updated
        """
        result = self.session.execute(
            update(User)
            .where(User.id == user_id)
            .values(refresh_token=refresh_token)
            .execution_options(synchronize_session="fetch")
        )
        try:
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        return result.rowcount > 0

    def replace_refresh_token(self, user_id: int, current: str, new: str) -> bool:
        """
        Swap the stored refresh token only if it still equals ``current``

        Two concurrent refreshes with the same token cannot both succeed.

        Returns:
            True if the swap happened
        """
        result = self.session.execute(
            update(User)
            .where(User.id == user_id, User.refresh_token == current)
            .values(refresh_token=new)
            .execution_options(synchronize_session="fetch")
        )
        try:
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        return result.rowcount > 0
