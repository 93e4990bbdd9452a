# votex/config.py
# Central place for thresholds and constants
import os
import secrets

from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# --- Persistence ---
# JSON document that plays the role of the browser's key-value storage
DB_PATH = os.getenv("VOTEX_DB_PATH", "data/votex_db.json")
# Prefix of every current storage key; legacy keys carry no prefix
NAMESPACE = os.getenv("VOTEX_NAMESPACE", "va_")

DEFAULT_OPTIONS = ["Option A", "Option B", "Option C"]

# --- Biometric ---
# Euclidean distance below which two face embeddings belong to the same person.
# Tuned for L2-normalised descriptors, not derived.
FACE_DISTANCE_THRESHOLD = float(os.getenv("VOTEX_FACE_DISTANCE_THRESHOLD", "0.55"))

# Minimum detector confidence for a frame to count as "a face is present"
FACE_MIN_CONFIDENCE = float(os.getenv("VOTEX_FACE_MIN_CONFIDENCE", "0.4"))

# Embedding dimension (InsightFace typical 512)
EMBED_DIM = int(os.getenv("VOTEX_EMBED_DIM", "512"))

# Capture polling: attempts per verification, seconds between attempts and
# how long a positive detection is held before it is reported
FACE_MAX_ATTEMPTS = int(os.getenv("VOTEX_FACE_MAX_ATTEMPTS", "100"))
FACE_POLL_INTERVAL = float(os.getenv("VOTEX_FACE_POLL_INTERVAL", "0.1"))
FACE_SETTLE_SECONDS = float(os.getenv("VOTEX_FACE_SETTLE_SECONDS", "1.0"))

# "embedding": live embedding must match the stored one for the claimed user.
# "presence": legacy behaviour, any sufficiently confident detection passes.
FACE_MATCH_MODE = os.getenv("VOTEX_FACE_MATCH_MODE", "embedding")

# Camera index used by the OpenCV capture device
CAMERA_INDEX = int(os.getenv("VOTEX_CAMERA_INDEX", "0"))

# Modality used when policy requires verification before a vote
VOTE_VERIFICATION_MODALITY = os.getenv("VOTEX_VOTE_VERIFICATION_MODALITY", "biometric")

# --- Security ---
# Off by default: passwords are stored as given unless hardening is enabled
HASH_PASSWORDS = _flag("VOTEX_HASH_PASSWORDS", False)
PASSWORD_SCHEMES = [s.strip() for s in os.getenv("VOTEX_PASSWORD_SCHEMES", "pbkdf2_sha256,bcrypt").split(",") if s.strip()]

# Placeholder admin credential; set VOTEX_ADMIN_PASSWORD_HASH in production
ADMIN_USERNAME = os.getenv("VOTEX_ADMIN_USERNAME", "admin")
ADMIN_PASSWORD = os.getenv("VOTEX_ADMIN_PASSWORD", "admin123")
ADMIN_PASSWORD_HASH = os.getenv("VOTEX_ADMIN_PASSWORD_HASH")

# --- HTTP ---
CORS_ORIGINS = [o.strip() for o in os.getenv("VOTEX_CORS_ORIGINS", "http://localhost:3000,http://localhost:5173").split(",") if o.strip()]

# --- Tokens ---
# Signing key for bearer tokens. Without one a fresh key is drawn per process,
# so tokens (and remembered admin access) do not outlive a restart.
SECRET_KEY = os.getenv("VOTEX_SECRET_KEY") or secrets.token_urlsafe(32)
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("VOTEX_ACCESS_TOKEN_EXPIRE_MINUTES", "60"))
