# votex/gate.py
"""
Verification gate: proves that the person in front of the device is the
claimed identity, through one of three modalities.

Password checks are delegated to the identity registry. Biometric checks poll
an external camera/embedding capability in a bounded, cancellable loop.
Platform credential checks hand a single-use challenge to an external
authenticator.
"""
import asyncio
import logging
import secrets
from dataclasses import dataclass
from typing import AsyncIterator, Optional, Protocol, Set, Union

import numpy as np

from .config import (
    FACE_DISTANCE_THRESHOLD,
    FACE_MATCH_MODE,
    FACE_MAX_ATTEMPTS,
    FACE_MIN_CONFIDENCE,
    FACE_POLL_INTERVAL,
    FACE_SETTLE_SECONDS,
)
from .errors import (
    AssertionRejected,
    CaptureUnavailable,
    NotEnrolled,
    UnsupportedModality,
    VerificationCancelled,
    VerificationTimeout,
)
from .face_utils import verify_embeddings
from .registry import IdentityRegistry

logger = logging.getLogger(__name__)

CHALLENGE_BYTES = 32


# --- External capabilities ---
class BiometricCapability(Protocol):
    def open(self) -> None: ...

    def close(self) -> None: ...

    def capture_frame(self): ...

    def embed(self, frame) -> Optional[np.ndarray]: ...

    def detect_presence(self, frame) -> Optional[float]: ...


class PlatformAuthenticator(Protocol):
    def create_credential(self, username: str, challenge: bytes) -> Optional[str]: ...

    def get_assertion(self, credential_ref: str, challenge: bytes) -> Optional[object]: ...


# --- Modalities ---
@dataclass(frozen=True)
class PasswordModality:
    password: str


@dataclass(frozen=True)
class PlatformCredentialModality:
    pass


@dataclass(frozen=True)
class BiometricModality:
    max_attempts: int = FACE_MAX_ATTEMPTS
    interval: float = FACE_POLL_INTERVAL
    settle_delay: float = FACE_SETTLE_SECONDS


Modality = Union[PasswordModality, PlatformCredentialModality, BiometricModality]


def modality_from_name(name: str) -> Modality:
    if name == "biometric":
        return BiometricModality()
    if name == "platform":
        return PlatformCredentialModality()
    raise UnsupportedModality(f"Unknown verification method: {name}")


@dataclass(frozen=True)
class Attempt:
    index: int
    detected: bool
    confidence: Optional[float] = None
    embedding: Optional[np.ndarray] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class Proof:
    username: str
    modality: str
    distance: Optional[float] = None
    confidence: Optional[float] = None


class VerificationGate:
    def __init__(self, registry: IdentityRegistry, capability: Optional[BiometricCapability] = None,
                 authenticator: Optional[PlatformAuthenticator] = None, threshold: float = FACE_DISTANCE_THRESHOLD,
                 match_mode: str = FACE_MATCH_MODE, min_confidence: float = FACE_MIN_CONFIDENCE):
        self.registry = registry
        self.capability = capability
        self.authenticator = authenticator
        self.threshold = threshold
        self.match_mode = match_mode
        self.min_confidence = min_confidence
        self._issued_challenges: Set[bytes] = set()
        self._cancel: Optional[asyncio.Event] = None

    # --- capture loop ---
    def cancel(self) -> None:
        """Close the verification surface; a running capture loop stops."""
        if self._cancel is not None:
            self._cancel.set()

    @property
    def capturing(self) -> bool:
        return self._cancel is not None

    async def attempts(self, modality: BiometricModality, want_embedding: bool = True) -> AsyncIterator[Attempt]:
        """
        Yield one Attempt per captured frame, at most ``modality.max_attempts``.

        The capture device must already be open. A frame whose detection
        raises is reported as a failed attempt and the loop goes on.
        """
        cap = self.capability
        for index in range(modality.max_attempts):
            if self._cancel is not None and self._cancel.is_set():
                raise VerificationCancelled()
            try:
                frame = cap.capture_frame()
                if want_embedding:
                    embedding = cap.embed(frame)
                    attempt = Attempt(index, embedding is not None, embedding=embedding)
                else:
                    confidence = cap.detect_presence(frame)
                    attempt = Attempt(index, confidence is not None and confidence >= self.min_confidence, confidence=confidence)
            except CaptureUnavailable:
                raise
            except Exception as e:
                logger.error(f"Detection error on attempt {index}: {e}")
                attempt = Attempt(index, False, error=str(e))
            yield attempt
            if index + 1 < modality.max_attempts:
                await self._sleep(modality.interval)

    async def _sleep(self, seconds: float) -> None:
        if seconds <= 0:
            await asyncio.sleep(0)
            return
        if self._cancel is None:
            await asyncio.sleep(seconds)
            return
        try:
            await asyncio.wait_for(self._cancel.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        raise VerificationCancelled()

    async def _run_capture(self, modality: BiometricModality, accept, want_embedding: bool = True):
        """Open the device, feed attempts to ``accept`` until it returns a result, always close."""
        if self.capability is None:
            raise CaptureUnavailable("No camera available.")
        if self._cancel is not None:
            raise CaptureUnavailable("Camera is already in use.")
        try:
            self.capability.open()
        except CaptureUnavailable:
            raise
        except Exception as e:
            logger.error(f"Camera access denied or failed: {e}")
            raise CaptureUnavailable() from e

        self._cancel = asyncio.Event()
        sequence = self.attempts(modality, want_embedding=want_embedding)
        try:
            async for attempt in sequence:
                result = accept(attempt)
                if result is not None:
                    # hold the positive detection before reporting it
                    await self._sleep(modality.settle_delay)
                    return result
            raise VerificationTimeout()
        finally:
            await sequence.aclose()
            self._cancel = None
            self.capability.close()

    def _accept_presence(self, attempt: Attempt):
        return attempt if attempt.detected else None

    # --- enrollment ---
    async def scan_embedding(self, modality: Optional[BiometricModality] = None, exclude=()) -> np.ndarray:
        """Capture one embedding and reject it if it duplicates an enrolled face."""
        modality = modality or BiometricModality()
        attempt = await self._run_capture(modality, lambda a: a if a.embedding is not None else None)
        self.registry.check_duplicate_face(attempt.embedding, exclude=exclude)
        return attempt.embedding

    async def enroll(self, username: str, modality: Modality):
        if not self.registry.exists(username):
            raise NotEnrolled("Unknown user.")
        if isinstance(modality, BiometricModality):
            embedding = await self.scan_embedding(modality, exclude=(username,))
            self.registry.store_face(username, embedding)
            return embedding
        if isinstance(modality, PlatformCredentialModality):
            if self.authenticator is None:
                raise UnsupportedModality("Biometrics not supported on this device.")
            ref = self.authenticator.create_credential(username, self._new_challenge())
            if not ref:
                raise AssertionRejected("Failed to register biometrics.")
            self.registry.store_credential_ref(username, ref)
            return ref
        raise UnsupportedModality("Passwords are set at registration.")

    # --- verification ---
    async def verify(self, username: str, modality: Modality) -> Proof:
        if isinstance(modality, PasswordModality):
            identity = self.registry.authenticate(username, modality.password)
            return Proof(identity.username, "password")
        if isinstance(modality, BiometricModality):
            return await self._verify_face(username, modality)
        if isinstance(modality, PlatformCredentialModality):
            return self._verify_platform(username)
        raise UnsupportedModality()

    async def _verify_face(self, username: str, modality: BiometricModality) -> Proof:
        if not self.registry.has_face(username):
            raise NotEnrolled("Face login not enabled for this user.")

        if self.match_mode == "presence":
            attempt = await self._run_capture(modality, self._accept_presence, want_embedding=False)
            logger.info(f"Face presence confirmed for {username} (confidence {attempt.confidence})")
            return Proof(username, "biometric", confidence=attempt.confidence)

        stored = self.registry.face_descriptor(username)

        def accept(attempt: Attempt):
            if attempt.embedding is None:
                return None
            match, dist = verify_embeddings(attempt.embedding, stored, self.threshold)
            logger.debug(f"Attempt {attempt.index}: distance {dist:.3f}")
            return dist if match else None

        dist = await self._run_capture(modality, accept)
        logger.info(f"Face verified for {username} (distance {dist:.3f})")
        return Proof(username, "biometric", distance=dist)

    def _new_challenge(self) -> bytes:
        while True:
            challenge = secrets.token_bytes(CHALLENGE_BYTES)
            if challenge not in self._issued_challenges:
                self._issued_challenges.add(challenge)
                return challenge

    def _verify_platform(self, username: str) -> Proof:
        ref = self.registry.credential_ref(username)
        if not ref:
            raise NotEnrolled("No biometrics registered for this user.")
        if self.authenticator is None:
            raise UnsupportedModality("Biometrics not supported on this device.")
        challenge = self._new_challenge()
        try:
            assertion = self.authenticator.get_assertion(ref, challenge)
        except Exception as e:
            logger.error(f"Platform assertion failed for {username}: {e}")
            raise AssertionRejected() from e
        if assertion is None:
            raise AssertionRejected()
        logger.info(f"Platform credential verified for {username}")
        return Proof(username, "platform")