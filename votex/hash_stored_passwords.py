# Hash every password still stored as given. Run once after enabling
# VOTEX_HASH_PASSWORDS: python -m votex.hash_stored_passwords
import logging

from .config import DB_PATH, NAMESPACE
from .security import hash_password, is_hashed
from .state import load_state, save_all
from .storage import PersistentStore, open_store

logger = logging.getLogger(__name__)


def hash_existing_passwords(store: PersistentStore) -> int:
    state = load_state(store, embed_dim=None)
    hashed = 0
    for username, stored in state.users.items():
        # Skip if password already looks hashed
        if stored and not is_hashed(stored):
            state.users[username] = hash_password(stored)
            hashed += 1
            logger.info(f"Hashed password for user {username}")
    if hashed:
        save_all(store, state)
    return hashed


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    count = hash_existing_passwords(open_store(DB_PATH, NAMESPACE))
    print(f"Hashed {count} password(s) in {DB_PATH}")
