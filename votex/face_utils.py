# votex/face_utils.py
import logging
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np

from .config import CAMERA_INDEX, EMBED_DIM, FACE_DISTANCE_THRESHOLD
from .errors import CaptureUnavailable

logger = logging.getLogger(__name__)


def to_vector(values, dim: Optional[int] = EMBED_DIM) -> np.ndarray:
    """
    Rehydrate a stored embedding into a fixed-width float32 vector.

    Accepts a numpy array, a list of floats, or the legacy object form
    ``{"0": f0, "1": f1, ...}`` produced by serializing a typed array.
    Raises ValueError when the shape is wrong.
    """
    if isinstance(values, dict):
        values = [values[k] for k in sorted(values, key=int)]
    vec = np.asarray(values, dtype=np.float32)
    if vec.ndim != 1:
        raise ValueError(f"embedding must be one-dimensional, got shape {vec.shape}")
    if dim is not None and vec.shape[0] != dim:
        raise ValueError(f"embedding must have {dim} values, got {vec.shape[0]}")
    if not np.all(np.isfinite(vec)):
        raise ValueError("embedding contains non-finite values")
    return vec


def to_list(vec: np.ndarray) -> List[float]:
    # float32 -> python float is exact, so the stored list reloads bit for bit
    return [float(x) for x in np.asarray(vec, dtype=np.float32)]


def euclidean_distance(a: np.ndarray, b: np.ndarray) -> float:
    a = np.asarray(a, dtype=np.float32)
    b = np.asarray(b, dtype=np.float32)
    if a.shape != b.shape:
        return float("inf")
    return float(np.linalg.norm(a - b))


def find_duplicate(
    embedding: np.ndarray,
    enrolled: Dict[str, np.ndarray],
    threshold: float = FACE_DISTANCE_THRESHOLD,
    exclude: Iterable[str] = (),
) -> Optional[Tuple[str, float]]:
    """
    Return ``(username, distance)`` of the closest enrolled embedding that lies
    strictly within ``threshold`` of ``embedding``, or None.
    """
    skip = set(exclude)
    best = None
    for username, stored in enrolled.items():
        if username in skip:
            continue
        dist = euclidean_distance(embedding, stored)
        if dist < threshold and (best is None or dist < best[1]):
            best = (username, dist)
    return best


def verify_embeddings(emb_live: np.ndarray, emb_stored: np.ndarray, threshold: float = FACE_DISTANCE_THRESHOLD) -> Tuple[bool, float]:
    """
    Compare embeddings using Euclidean distance and threshold.
    Returns (is_match, distance)
    """
    dist = euclidean_distance(emb_live, emb_stored)
    return dist < threshold, dist


class InsightFaceCamera:
    """
    Biometric capability backed by an OpenCV camera and InsightFace.

    Both libraries come from the ``face`` extra and are imported on first use;
    ``face_app`` and ``capture_factory`` can be injected instead.
    """

    def __init__(self, camera_index: int = CAMERA_INDEX, face_app=None, capture_factory=None, model_name: str = "buffalo_l"):
        self.camera_index = camera_index
        self.model_name = model_name
        self._face_app = face_app
        self._capture_factory = capture_factory
        self._capture = None

    def get_face_app(self):
        """Lazy initialization of the face analysis model"""
        if self._face_app is None:
            from insightface.app import FaceAnalysis

            app = FaceAnalysis(name=self.model_name, providers=["CPUExecutionProvider"])
            app.prepare(ctx_id=0, det_size=(640, 640))
            logger.info(f"Loaded InsightFace with {self.model_name} model")
            self._face_app = app
        return self._face_app

    def open(self) -> None:
        if self._capture is not None:
            return
        if self._capture_factory is None:
            import cv2

            self._capture_factory = cv2.VideoCapture
        capture = self._capture_factory(self.camera_index)
        if capture is None or not capture.isOpened():
            raise CaptureUnavailable()
        self._capture = capture

    def close(self) -> None:
        if self._capture is not None:
            self._capture.release()
            self._capture = None

    def capture_frame(self) -> np.ndarray:
        if self._capture is None:
            raise CaptureUnavailable()
        ok, frame = self._capture.read()
        if not ok or frame is None:
            # a dropped frame fails one attempt, not the whole capture
            raise RuntimeError("Camera returned no frame.")
        return frame

    def _largest_face(self, frame: np.ndarray):
        faces = self.get_face_app().get(frame)
        if not faces:
            return None
        return sorted(faces, key=lambda x: (x.bbox[2] - x.bbox[0]) * (x.bbox[3] - x.bbox[1]))[-1]

    def embed(self, frame: np.ndarray) -> Optional[np.ndarray]:
        face = self._largest_face(frame)
        if face is None:
            return None
        return face.normed_embedding.astype(np.float32)

    def detect_presence(self, frame: np.ndarray) -> Optional[float]:
        face = self._largest_face(frame)
        if face is None:
            return None
        return float(face.det_score)
