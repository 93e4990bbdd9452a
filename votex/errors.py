# votex/errors.py
"""
Error taxonomy shared by every component.

Each error carries a user-facing ``message``. The HTTP layer maps the five
families (validation, policy, duplicate identity, verification, persistence)
onto status codes; nothing here is fatal to the process.
"""


class VotexError(Exception):
    message = "Operation failed."

    def __init__(self, message: str = None):
        if message is not None:
            self.message = message
        super().__init__(self.message)


# --- Validation: bad input shape, shown next to the offending field ---
class ValidationError(VotexError):
    message = "Invalid input."


class InvalidUsername(ValidationError):
    message = "Username must be at least 3 characters of letters, numbers, and underscore."


class WeakPassword(ValidationError):
    message = "Password must be at least 6 characters."


class DuplicateUsername(ValidationError):
    message = "Username already exists."


class InvalidCredentials(ValidationError):
    message = "Invalid username or password."


class InvalidOption(ValidationError):
    message = "Option name must not be empty."


class UnknownOption(ValidationError):
    message = "Invalid option."


class DuplicateOption(ValidationError):
    message = "Option already exists."


# --- Policy: the action is not allowed right now ---
class PolicyViolation(VotexError):
    message = "Action not allowed."


class Unauthenticated(PolicyViolation):
    message = "Please login first."


class VotingClosed(PolicyViolation):
    message = "Voting is currently closed."


class AlreadyVoted(PolicyViolation):
    message = "You have already voted!"


class NotAdmin(PolicyViolation):
    message = "Admin login required."


# --- Duplicate identity: a second account for an enrolled person ---
class DuplicateIdentity(VotexError):
    message = "This face is already registered with another account."

    def __init__(self, message: str = None, existing: str = None):
        super().__init__(message)
        self.existing = existing


class DuplicateBiometric(DuplicateIdentity):
    pass


# --- Verification: retryable by invoking verification again ---
class VerificationFailure(VotexError):
    message = "Verification failed. Try again."


class CaptureUnavailable(VerificationFailure):
    message = "Camera access denied or failed."


class VerificationTimeout(VerificationFailure):
    message = "No matching face found. Position your face clearly and try again."


class NotEnrolled(VerificationFailure):
    message = "No verification enrolled for this user."


class AssertionRejected(VerificationFailure):
    message = "Biometric login failed."


class VerificationCancelled(VerificationFailure):
    message = "Verification cancelled."


class UnsupportedModality(VerificationFailure):
    message = "Verification method not supported."


# --- Persistence: malformed stored or imported data ---
class PersistenceCorruption(VotexError):
    message = "Stored data is corrupted."


class MalformedDocument(PersistenceCorruption):
    message = "Invalid JSON file."
