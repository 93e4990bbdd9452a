# votex/state.py
"""
The in-memory aggregate and its persistence.

Every mutation updates a ``VotingState`` completely and then calls
``save_all``, so a crash can lose at most the last operation, never half of
one.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import numpy as np
from pydantic import ValidationError as SchemaError

from .config import DEFAULT_OPTIONS, EMBED_DIM
from .face_utils import to_list, to_vector
from .schemas import Policy
from .storage import PersistentStore

logger = logging.getLogger(__name__)

# logical key -> (stored key without namespace, legacy key)
KEYS = {
    "identities": ("users", "users"),
    "tally": ("votes", "votes"),
    "options": ("options", None),
    "voteRecords": ("userVotes", None),
    "policy": ("settings", None),
    "credentialRefs": ("biometrics", None),
    "biometricEnrollmentFlags": ("faceEnrollments", None),
    "biometricEmbeddings": ("faceDescriptors", None),
}

USER_MARKER = ("userLoggedIn", "userLoggedIn")
ADMIN_MARKER = "adminLoggedIn"


@dataclass
class VotingState:
    users: Dict[str, str] = field(default_factory=dict)
    votes: Dict[str, int] = field(default_factory=dict)
    options: List[str] = field(default_factory=list)
    user_votes: Dict[str, str] = field(default_factory=dict)
    policy: Policy = field(default_factory=Policy)
    credential_refs: Dict[str, str] = field(default_factory=dict)
    face_enrollments: Dict[str, bool] = field(default_factory=dict)
    face_descriptors: Dict[str, np.ndarray] = field(default_factory=dict)


def _load(store: PersistentStore, logical: str, default, kind: type):
    key, legacy = KEYS[logical]
    value = store.load(key, default, legacy_key=legacy)
    if not isinstance(value, kind):
        logger.debug(f"Ignoring {logical}: expected {kind.__name__}, got {type(value).__name__}")
        return default
    return value


def _load_policy(store: PersistentStore) -> Policy:
    raw = _load(store, "policy", {}, dict)
    try:
        return Policy.model_validate(raw)
    except SchemaError:
        logger.debug("Ignoring malformed settings, using defaults")
        return Policy()


def _load_descriptors(store: PersistentStore, dim: Optional[int]) -> Dict[str, np.ndarray]:
    descriptors = {}
    for username, values in _load(store, "biometricEmbeddings", {}, dict).items():
        try:
            descriptors[username] = to_vector(values, dim)
        except (TypeError, ValueError, KeyError) as e:
            logger.warning(f"Dropping unreadable face descriptor for {username}: {e}")
    return descriptors


def _is_option_name(name) -> bool:
    return isinstance(name, str) and bool(name.strip())


def reconcile(state: VotingState, default_options: List[str] = DEFAULT_OPTIONS) -> None:
    """
    Restore the option/tally/vote-record invariants in place.

    Options missing or empty are inferred from the tally keys, or seeded with
    ``default_options``. Blank option names are dropped. Every option gets a
    zero tally if it has none; tally entries and vote records that reference
    no current option are dropped, and so are enrollment artifacts of users
    that no longer exist.
    """
    options = []
    for opt in state.options:
        if _is_option_name(opt) and opt not in options:
            options.append(opt)
    if not options:
        legacy_opts = [opt for opt in state.votes if _is_option_name(opt)]
        options = legacy_opts if legacy_opts else list(default_options)
    state.options = options

    votes = {}
    for opt in options:
        count = state.votes.get(opt)
        votes[opt] = count if isinstance(count, int) and not isinstance(count, bool) and count >= 0 else 0
    orphans = set(state.votes) - set(votes)
    if orphans:
        logger.warning(f"Dropping tally entries for unknown options: {sorted(orphans)}")
    state.votes = votes

    stale = [u for u, opt in state.user_votes.items() if not isinstance(opt, str) or opt not in votes]
    for username in stale:
        del state.user_votes[username]
    if stale:
        logger.warning(f"Cleared {len(stale)} vote record(s) pointing at removed options")

    drop_orphan_artifacts(state)


def drop_orphan_artifacts(state: VotingState) -> None:
    """Enrollment artifacts belong to one identity and go away with it."""
    for kind, artifacts in (("credential", state.credential_refs),
                            ("enrollment flag", state.face_enrollments),
                            ("face descriptor", state.face_descriptors)):
        orphans = [u for u in artifacts if u not in state.users]
        for username in orphans:
            del artifacts[username]
        if orphans:
            logger.warning(f"Dropped {kind} of removed user(s): {sorted(orphans)}")


def load_state(store: PersistentStore, default_options: List[str] = DEFAULT_OPTIONS, embed_dim: Optional[int] = EMBED_DIM) -> VotingState:
    """Read the aggregate, run the one unconditional migration and write it back."""
    state = VotingState(
        users=_load(store, "identities", {}, dict),
        votes=_load(store, "tally", {}, dict),
        options=_load(store, "options", [], list),
        user_votes=_load(store, "voteRecords", {}, dict),
        policy=_load_policy(store),
        credential_refs=_load(store, "credentialRefs", {}, dict),
        face_enrollments=_load(store, "biometricEnrollmentFlags", {}, dict),
        face_descriptors=_load_descriptors(store, embed_dim),
    )
    reconcile(state, default_options)
    save_all(store, state)
    logger.info(f"Loaded {len(state.users)} users, {len(state.options)} options, {sum(state.votes.values())} votes")
    return state


def save_all(store: PersistentStore, state: VotingState) -> None:
    store.save(KEYS["identities"][0], state.users)
    store.save(KEYS["tally"][0], state.votes)
    store.save(KEYS["options"][0], state.options)
    store.save(KEYS["voteRecords"][0], state.user_votes)
    store.save(KEYS["policy"][0], state.policy.to_storage())
    store.save(KEYS["credentialRefs"][0], state.credential_refs)
    store.save(KEYS["biometricEnrollmentFlags"][0], state.face_enrollments)
    store.save(KEYS["biometricEmbeddings"][0], {u: to_list(v) for u, v in state.face_descriptors.items()})
    # keep legacy votes in sync
    store.save_legacy(KEYS["tally"][1], state.votes)
