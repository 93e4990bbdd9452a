# votex/admin.py
import json
import logging
from typing import Any, Callable, Union

from pydantic import ValidationError as SchemaError

from .config import DEFAULT_OPTIONS
from .errors import DuplicateOption, InvalidOption, MalformedDocument, NotAdmin, UnknownOption
from .schemas import Policy, Snapshot
from .state import VotingState, drop_orphan_artifacts, reconcile, save_all
from .storage import PersistentStore

logger = logging.getLogger(__name__)


class AdminManager:
    """
    Option management, tally reset, policy toggles and snapshot import/export.

    ``is_admin`` is consulted before every operation so the manager can be
    shared with the session that grants admin rights.
    """

    def __init__(self, state: VotingState, store: PersistentStore, is_admin: Callable[[], bool] = lambda: True):
        self.state = state
        self.store = store
        self.is_admin = is_admin

    def _require_admin(self) -> None:
        if not self.is_admin():
            raise NotAdmin()

    # --- options ---
    def add_option(self, name: str) -> str:
        self._require_admin()
        name = (name or "").strip()
        if not name:
            raise InvalidOption()
        if name in self.state.options:
            raise DuplicateOption()
        self.state.options.append(name)
        self.state.votes[name] = 0
        save_all(self.store, self.state)
        logger.info(f"Option added: {name!r}")
        return name

    def remove_option(self, name: str) -> None:
        """Remove an option together with its tally and every vote record pointing at it."""
        self._require_admin()
        if name not in self.state.options:
            raise UnknownOption()
        self.state.options = [o for o in self.state.options if o != name]
        discarded = self.state.votes.pop(name, 0)
        cleared = [u for u, choice in self.state.user_votes.items() if choice == name]
        for username in cleared:
            del self.state.user_votes[username]
        save_all(self.store, self.state)
        logger.info(f"Option removed: {name!r} ({discarded} votes discarded, {len(cleared)} voters reset)")

    def reset_votes(self) -> None:
        self._require_admin()
        for opt in self.state.votes:
            self.state.votes[opt] = 0
        self.state.user_votes = {}
        save_all(self.store, self.state)
        logger.info("Votes reset")

    # --- policy ---
    def set_policy(self, **changes: bool) -> Policy:
        self._require_admin()
        unknown = set(changes) - set(Policy.model_fields)
        if unknown:
            raise TypeError(f"Unknown policy fields: {sorted(unknown)}")
        updates = {k: bool(v) for k, v in changes.items() if v is not None}
        self.state.policy = self.state.policy.model_copy(update=updates)
        save_all(self.store, self.state)
        for field, value in updates.items():
            logger.info(f"Policy {field} set to {value}")
        return self.state.policy

    # --- snapshots ---
    def export_snapshot(self) -> str:
        self._require_admin()
        payload = {
            "users": self.state.users,
            "votes": self.state.votes,
            "options": self.state.options,
            "userVotes": self.state.user_votes,
            "settings": self.state.policy.to_storage(),
        }
        return json.dumps(payload, indent=2)

    def import_snapshot(self, document: Union[str, bytes, dict, Any]) -> None:
        """
        Replace users, tally, options, vote records and settings with the
        document's content. Enrollment artifacts are kept for users the
        document still contains and dropped for the rest. On any parse or
        shape error nothing changes.
        """
        self._require_admin()
        try:
            if isinstance(document, (str, bytes, bytearray)):
                document = json.loads(document)
            snapshot = Snapshot.model_validate(document)
        except (ValueError, SchemaError) as e:
            # pydantic's ValidationError is a ValueError; json errors are too
            logger.warning(f"Rejected import: {e}")
            raise MalformedDocument() from e

        imported = VotingState(
            users=dict(snapshot.users),
            votes=dict(snapshot.votes),
            options=list(snapshot.options),
            user_votes=dict(snapshot.userVotes),
            policy=snapshot.settings,
        )
        reconcile(imported, DEFAULT_OPTIONS)

        self.state.users = imported.users
        self.state.votes = imported.votes
        self.state.options = imported.options
        self.state.user_votes = imported.user_votes
        self.state.policy = imported.policy
        drop_orphan_artifacts(self.state)
        save_all(self.store, self.state)
        logger.info(f"Imported {len(self.state.users)} users and {len(self.state.options)} options")
