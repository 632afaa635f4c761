import logging
from datetime import datetime, timezone
from typing import Tuple

from jose import jwt, JWTError
from passlib.context import CryptContext

import config
from database import Store
from errors import Conflict, InvalidInput, Unauthenticated
from schemas import User, UserPublic

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

MIN_PASSWORD_LENGTH = 6


def create_token(user_id: str) -> str:
    payload = {
        "sub": user_id,
        "exp": int(datetime.now(timezone.utc).timestamp()) + config.TOKEN_TTL_SECONDS,
    }
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALG)


def decode_token(token: str) -> str:
    try:
        payload = jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALG])
    except JWTError:
        raise Unauthenticated("Invalid token")
    user_id = payload.get("sub")
    if not user_id:
        raise Unauthenticated("Invalid token")
    return user_id


class AuthService:
    def __init__(self, store: Store):
        self.store = store

    def register(self, username: str, email: str, password: str) -> Tuple[UserPublic, str]:
        username = (username or "").strip()
        email = (email or "").strip().lower()
        if not username:
            raise InvalidInput("Username is required")
        if len(password or "") < MIN_PASSWORD_LENGTH:
            raise InvalidInput(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        if self.store.users.find_one({"email": email}):
            raise Conflict("Email already registered")
        if self.store.users.find_one({"username": username}):
            raise Conflict("Username already taken")
        user = User(
            username=username,
            email=email,
            password_hash=pwd_context.hash(password),
            created_at=self.store.clock(),
        )
        user = self.store.users.insert(user)
        logger.info("Registered user %s (%s)", user.id, username)
        return UserPublic.from_user(user), create_token(user.id)

    def login(self, email: str, password: str) -> str:
        user = self.store.users.find_one({"email": (email or "").strip().lower()})
        if not user or not pwd_context.verify(password, user.password_hash):
            raise InvalidInput("Invalid credentials")
        return create_token(user.id)

    def authenticate(self, token: str) -> User:
        user = self.store.users.find(decode_token(token))
        if not user:
            raise Unauthenticated("User not found")
        return user
