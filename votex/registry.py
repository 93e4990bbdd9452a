# votex/registry.py
import logging
import re
from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from .config import EMBED_DIM, FACE_DISTANCE_THRESHOLD, HASH_PASSWORDS
from .errors import DuplicateBiometric, DuplicateUsername, InvalidCredentials, InvalidUsername, WeakPassword
from .face_utils import find_duplicate, to_vector
from .security import check_password, hash_password
from .state import VotingState, save_all
from .storage import PersistentStore

logger = logging.getLogger(__name__)

USERNAME_RE = re.compile(r"^[A-Za-z0-9_]+$")
MIN_USERNAME_LENGTH = 3
MIN_PASSWORD_LENGTH = 6


@dataclass(frozen=True)
class Identity:
    username: str


class IdentityRegistry:
    """Accounts, password credentials and enrolled verification artifacts."""

    def __init__(self, state: VotingState, store: PersistentStore, hash_passwords: bool = HASH_PASSWORDS,
                 threshold: float = FACE_DISTANCE_THRESHOLD, embed_dim: Optional[int] = EMBED_DIM):
        self.state = state
        self.store = store
        self.hash_passwords = hash_passwords
        self.threshold = threshold
        self.embed_dim = embed_dim

    def exists(self, username: Optional[str]) -> bool:
        return bool(username) and username in self.state.users

    def get(self, username: str) -> Optional[Identity]:
        return Identity(username) if self.exists(username) else None

    def usernames(self) -> List[str]:
        return list(self.state.users)

    def validate(self, username: str, password: str) -> None:
        if len(username) < MIN_USERNAME_LENGTH or not USERNAME_RE.match(username):
            raise InvalidUsername()
        if len(password) < MIN_PASSWORD_LENGTH:
            raise WeakPassword()
        if username in self.state.users:
            raise DuplicateUsername()

    def check_duplicate_face(self, embedding: np.ndarray, exclude=()) -> None:
        match = find_duplicate(embedding, self.state.face_descriptors, self.threshold, exclude=exclude)
        if match is not None:
            username, dist = match
            logger.warning(f"Face matches enrolled user {username} (distance {dist:.3f})")
            raise DuplicateBiometric(existing=username)

    def register(self, username: str, password: str, embedding=None, credential_ref: Optional[str] = None) -> Identity:
        username = username.strip()
        self.validate(username, password)
        vec = None
        if embedding is not None:
            vec = to_vector(embedding, self.embed_dim)
            # anything still stored under this name belongs to no account
            self.check_duplicate_face(vec, exclude=(username,))

        self.forget_artifacts(username)
        self.state.users[username] = hash_password(password) if self.hash_passwords else password
        if vec is not None:
            self.state.face_enrollments[username] = True
            self.state.face_descriptors[username] = vec
        if credential_ref:
            self.state.credential_refs[username] = credential_ref
        save_all(self.store, self.state)
        logger.info(f"Registered user {username} (face={vec is not None}, platform={bool(credential_ref)})")
        return Identity(username)

    def authenticate(self, username: str, password: str) -> Identity:
        username = username.strip()
        stored = self.state.users.get(username)
        if stored is None or not check_password(password, stored):
            raise InvalidCredentials()
        return Identity(username)

    # --- enrollment artifacts ---
    def has_face(self, username: str) -> bool:
        return bool(self.state.face_enrollments.get(username)) and username in self.state.face_descriptors

    def face_descriptor(self, username: str) -> Optional[np.ndarray]:
        return self.state.face_descriptors.get(username)

    def credential_ref(self, username: str) -> Optional[str]:
        return self.state.credential_refs.get(username)

    def forget_artifacts(self, username: str) -> None:
        """Drop every enrollment artifact stored under ``username``."""
        self.state.credential_refs.pop(username, None)
        self.state.face_enrollments.pop(username, None)
        self.state.face_descriptors.pop(username, None)

    def store_face(self, username: str, embedding) -> None:
        vec = to_vector(embedding, self.embed_dim)
        self.check_duplicate_face(vec, exclude=(username,))
        self.state.face_enrollments[username] = True
        self.state.face_descriptors[username] = vec
        save_all(self.store, self.state)
        logger.info(f"Enrolled face for {username}")

    def store_credential_ref(self, username: str, credential_ref: str) -> None:
        self.state.credential_refs[username] = credential_ref
        save_all(self.store, self.state)
        logger.info(f"Registered platform credential for {username}")
