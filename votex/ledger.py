# votex/ledger.py
import logging
from typing import List, Optional

from .admin import AdminManager
from .config import DB_PATH, DEFAULT_OPTIONS, EMBED_DIM, FACE_DISTANCE_THRESHOLD, HASH_PASSWORDS, NAMESPACE
from .engine import VotingEngine
from .errors import VerificationFailure
from .gate import BiometricCapability, BiometricModality, Modality, PlatformAuthenticator, PlatformCredentialModality, Proof, VerificationGate
from .registry import Identity, IdentityRegistry
from .session import Session
from .state import VotingState, load_state
from .storage import PersistentStore, open_store

logger = logging.getLogger(__name__)


class VotingLedger:
    """
    Owns the state aggregate and hands it to every component.

    Components never reach for globals; anything that needs the state, the
    store or the session gets it from here at construction time.
    """

    def __init__(self, state: VotingState, store: PersistentStore, capability: Optional[BiometricCapability] = None,
                 authenticator: Optional[PlatformAuthenticator] = None, hash_passwords: bool = HASH_PASSWORDS,
                 embed_dim: Optional[int] = EMBED_DIM, threshold: float = FACE_DISTANCE_THRESHOLD, **gate_options):
        self.state = state
        self.store = store
        self.registry = IdentityRegistry(state, store, hash_passwords=hash_passwords, threshold=threshold, embed_dim=embed_dim)
        self.gate = VerificationGate(self.registry, capability, authenticator, threshold=threshold, **gate_options)
        self.session = Session(store, self.registry, self.gate)
        self.engine = VotingEngine(state, store, self.registry, self.gate)
        self.admin = AdminManager(state, store, is_admin=lambda: self.session.is_admin)

    @classmethod
    def open(cls, store: Optional[PersistentStore] = None, default_options: List[str] = DEFAULT_OPTIONS,
             embed_dim: Optional[int] = EMBED_DIM, **kwargs) -> "VotingLedger":
        """Load (and migrate) the persisted state, then restore the session."""
        if store is None:
            store = open_store(DB_PATH, NAMESPACE)
        state = load_state(store, default_options, embed_dim=embed_dim)
        ledger = cls(state, store, embed_dim=embed_dim, **kwargs)
        ledger.session.restore()
        return ledger

    async def register(self, username: str, password: str, enroll_face: bool = False,
                       enroll_platform_credential: bool = False, face: Optional[BiometricModality] = None) -> Identity:
        """
        Full registration: optional face scan first (so a duplicate person is
        turned away before any account exists), then the account, then login,
        then an optional platform credential.
        """
        self.registry.validate(username.strip(), password)
        embedding = None
        if enroll_face:
            embedding = await self.gate.scan_embedding(face)
        identity = self.registry.register(username, password, embedding=embedding)
        self.session.login(identity.username)
        if enroll_platform_credential:
            try:
                await self.gate.enroll(identity.username, PlatformCredentialModality())
            except VerificationFailure as e:
                # the account stands; the credential can be linked later
                logger.warning(f"Platform credential not linked for {identity.username}: {e.message}")
        return identity

    async def vote(self, option: str, modality: Optional[Modality] = None) -> Optional[Proof]:
        return await self.engine.cast_vote(self.session.current_identity, option, modality)
