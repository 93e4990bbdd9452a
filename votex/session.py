# votex/session.py
import logging
from typing import Optional

from .errors import InvalidCredentials
from .gate import BiometricModality, PlatformCredentialModality, Proof, VerificationGate
from .registry import IdentityRegistry
from .security import verify_admin
from .state import ADMIN_MARKER, USER_MARKER
from .storage import PersistentStore

logger = logging.getLogger(__name__)


class Session:
    """
    Who is acting right now: the logged-in voter, if any, and whether the
    admin is logged in. Both are remembered across restarts through raw
    markers in the store.
    """

    def __init__(self, store: PersistentStore, registry: IdentityRegistry, gate: VerificationGate):
        self.store = store
        self.registry = registry
        self.gate = gate
        self.current_identity: Optional[str] = None
        self.is_admin = False

    def restore(self) -> None:
        remembered = self.store.raw_get(*USER_MARKER)
        if remembered and self.registry.exists(remembered):
            self.current_identity = remembered
            logger.info(f"Restored session for {remembered}")
        elif remembered:
            logger.info(f"Forgetting remembered user {remembered}, no such account")
            self.store.delete(*USER_MARKER)
        self.is_admin = self.store.raw_get(ADMIN_MARKER) == "true"

    # --- voter ---
    def login(self, username: str) -> str:
        self.current_identity = username
        self.store.raw_set(USER_MARKER[0], username)
        logger.info(f"User {username} logged in")
        return username

    def logout(self) -> None:
        if self.current_identity:
            logger.info(f"User {self.current_identity} logged out")
        self.current_identity = None
        self.store.delete(*USER_MARKER)

    def login_with_password(self, username: str, password: str) -> Proof:
        identity = self.registry.authenticate(username, password)
        self.login(identity.username)
        return Proof(identity.username, "password")

    async def login_with_face(self, username: str, modality: Optional[BiometricModality] = None) -> Proof:
        username = username.strip()
        if not self.registry.exists(username):
            raise InvalidCredentials()
        proof = await self.gate.verify(username, modality or BiometricModality())
        self.login(username)
        return proof

    async def login_with_platform_credential(self, username: str) -> Proof:
        username = username.strip()
        if not self.registry.exists(username):
            raise InvalidCredentials()
        proof = await self.gate.verify(username, PlatformCredentialModality())
        self.login(username)
        return proof

    # --- admin ---
    def admin_login(self, username: str, password: str) -> None:
        if not verify_admin(username.strip(), password):
            raise InvalidCredentials("Invalid admin credentials.")
        self.is_admin = True
        self.store.raw_set(ADMIN_MARKER, "true")
        logger.info("Admin logged in")

    def admin_logout(self) -> None:
        self.is_admin = False
        self.store.delete(ADMIN_MARKER)
        logger.info("Admin logged out")
