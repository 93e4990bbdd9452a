import os

# Fast capture loop and small embeddings for every test; set before votex.config is imported
os.environ["VOTEX_EMBED_DIM"] = "4"
os.environ["VOTEX_FACE_MAX_ATTEMPTS"] = "5"
os.environ["VOTEX_FACE_POLL_INTERVAL"] = "0"
os.environ["VOTEX_FACE_SETTLE_SECONDS"] = "0"
os.environ["VOTEX_FACE_MATCH_MODE"] = "embedding"
os.environ["VOTEX_HASH_PASSWORDS"] = "0"
os.environ["VOTEX_ADMIN_USERNAME"] = "admin"
os.environ["VOTEX_ADMIN_PASSWORD"] = "admin123"
os.environ.pop("VOTEX_ADMIN_PASSWORD_HASH", None)

import numpy as np
import pytest

from votex.ledger import VotingLedger
from votex.storage import MemoryBackend, PersistentStore


def face(*head, dim=4):
    """A 4-d embedding whose leading values are ``head``."""
    values = list(head) + [0.0] * (dim - len(head))
    return np.asarray(values, dtype=np.float32)


class FakeCamera:
    """
    Biometric capability fed from a script of frames. A frame is the
    embedding the model would produce for it, or None for "no face".
    """

    def __init__(self, frames=(), open_error=None, fail_on=(), drop_on=(), confidence=0.9):
        self.frames = list(frames)
        self.open_error = open_error
        self.fail_on = set(fail_on)
        self.drop_on = set(drop_on)
        self.confidence = confidence
        self.opened = 0
        self.closed = 0
        self.captured = 0

    def feed(self, *frames):
        self.frames.extend(frames)

    def open(self):
        if self.open_error is not None:
            raise self.open_error
        self.opened += 1

    def close(self):
        self.closed += 1

    def capture_frame(self):
        index = self.captured
        self.captured += 1
        if index in self.drop_on:
            raise RuntimeError("camera returned no frame")
        if index in self.fail_on:
            return "broken"
        return self.frames.pop(0) if self.frames else None

    def embed(self, frame):
        if isinstance(frame, str):
            raise RuntimeError("model crashed")
        return frame

    def detect_presence(self, frame):
        if isinstance(frame, str):
            raise RuntimeError("model crashed")
        return None if frame is None else self.confidence


class FakeAuthenticator:
    def __init__(self, accept=True):
        self.accept = accept
        self.challenges = []
        self.created = []

    def create_credential(self, username, challenge):
        self.challenges.append(challenge)
        self.created.append(username)
        return f"cred-{username}"

    def get_assertion(self, credential_ref, challenge):
        self.challenges.append(challenge)
        return {"credential": credential_ref} if self.accept else None


@pytest.fixture
def store():
    return PersistentStore(MemoryBackend())


@pytest.fixture
def camera():
    return FakeCamera()


@pytest.fixture
def authenticator():
    return FakeAuthenticator()


@pytest.fixture
def ledger(store, camera, authenticator):
    return VotingLedger.open(store, capability=camera, authenticator=authenticator, embed_dim=4)


@pytest.fixture
def admin_ledger(ledger):
    ledger.session.admin_login("admin", "admin123")
    return ledger
