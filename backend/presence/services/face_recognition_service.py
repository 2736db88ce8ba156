# File: backend/presence/services/face_recognition_service.py
"""Face verification capability and encrypted reference templates."""
import base64
import hashlib
import json
import logging
import math
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

import requests
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from presence.services.errors import VerificationUnavailable

logger = logging.getLogger(__name__)

DATA_URL_PREFIX = re.compile(r'^data:image/\w+;base64,')


@dataclass(frozen=True)
class MatchResult:
    """Outcome of one biometric comparison."""
    is_match: bool
    distance: Optional[float] = None


class BiometricVerifier(ABC):
    """
    Compares a captured face against a participant's registered reference.

    Implementations must raise ``VerificationUnavailable`` for every failure
    that is not a genuine comparison result (I/O errors, no face detected,
    model unavailable). A returned ``MatchResult`` always means the matcher
    actually ran.
    """

    @abstractmethod
    def verify(self, captured_image: Any, reference_image: Any) -> MatchResult:
        """Compare two face representations."""


class DescriptorVerifier(BiometricVerifier):
    """
    In-process matcher for face descriptors extracted on the client.

    Both inputs are descriptor vectors (a list of floats, a JSON encoded list,
    or a mapping with a ``descriptor`` key). Faces match when the euclidean
    distance between descriptors is below ``threshold``.
    """

    def __init__(self, threshold: float = 0.6):
        self.threshold = threshold

    @staticmethod
    def _to_vector(payload: Any, label: str) -> List[float]:
        if isinstance(payload, (str, bytes)):
            try:
                payload = json.loads(payload)
            except ValueError:
                raise VerificationUnavailable(f"{label} descriptor is not valid JSON")

        if isinstance(payload, dict):
            payload = payload.get('descriptor')

        if not payload:
            raise VerificationUnavailable(f"No face detected in {label} image")

        try:
            vector = [float(value) for value in payload]
        except (TypeError, ValueError):
            raise VerificationUnavailable(f"{label} descriptor must be a list of numbers")

        if not all(math.isfinite(value) for value in vector):
            raise VerificationUnavailable(f"{label} descriptor contains non-finite values")

        return vector

    def verify(self, captured_image: Any, reference_image: Any) -> MatchResult:
        captured = self._to_vector(captured_image, 'captured')
        reference = self._to_vector(reference_image, 'reference')

        if len(captured) != len(reference):
            raise VerificationUnavailable(
                f"Descriptor size mismatch: {len(captured)} != {len(reference)}"
            )

        distance = math.sqrt(sum((a - b) ** 2 for a, b in zip(captured, reference)))
        return MatchResult(is_match=distance < self.threshold, distance=distance)


class HTTPFaceVerifier(BiometricVerifier):
    """
    Delegates comparison to a remote face-matching service.

    The service receives ``{"captured": <base64>, "reference": <base64>}`` and
    answers ``{"is_match": bool, "distance": float}`` or ``{"error": "..."}``.
    """

    def __init__(self, url: str, timeout: float = 10, session: requests.Session = None):
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()

    @staticmethod
    def _strip_data_url(image: Any) -> Any:
        if isinstance(image, str):
            return DATA_URL_PREFIX.sub('', image)
        return image

    def verify(self, captured_image: Any, reference_image: Any) -> MatchResult:
        payload = {
            'captured': self._strip_data_url(captured_image),
            'reference': self._strip_data_url(reference_image)
        }

        try:
            response = self.session.post(self.url, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            logger.warning("Face matcher request failed: %s", e)
            raise VerificationUnavailable(f"Face matcher unreachable: {e}")

        if response.status_code != 200:
            logger.warning("Face matcher returned HTTP %s", response.status_code)
            raise VerificationUnavailable(f"Face matcher returned HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError:
            raise VerificationUnavailable("Face matcher returned invalid JSON")

        if data.get('error'):
            raise VerificationUnavailable(f"Face matcher error: {data['error']}")

        if not isinstance(data.get('is_match'), bool):
            raise VerificationUnavailable("Face matcher response missing is_match")

        distance = data.get('distance')
        return MatchResult(
            is_match=data['is_match'],
            distance=float(distance) if distance is not None else None
        )


def create_verifier(config) -> BiometricVerifier:
    """Build the verifier selected by ``BIOMETRIC_BACKEND``."""
    backend = config.get('BIOMETRIC_BACKEND', 'descriptor')

    if backend == 'descriptor':
        return DescriptorVerifier(threshold=config.get('FACE_MATCH_THRESHOLD', 0.6))

    if backend == 'http':
        url = config.get('FACE_MATCHER_URL')
        if not url:
            raise ValueError("FACE_MATCHER_URL is required for the http biometric backend")
        return HTTPFaceVerifier(url, timeout=config.get('FACE_MATCHER_TIMEOUT', 10))

    raise ValueError(f"Unknown biometric backend: {backend}")


class FaceRecognitionService:
    """
    Encryption of registered face templates.

    🔒 Templates are stored Fernet-encrypted with a key derived per participant,
    so a leaked table row cannot be compared without the application secret.
    """

    TEMPLATE_ENCRYPTION_KEY_SIZE = 32
    KDF_ITERATIONS = 100000

    @classmethod
    def generate_encryption_key(cls, participant_id: str, secret: str) -> bytes:
        """Generate unique encryption key for a participant's face template."""
        password = f"{participant_id}:{secret}:face_template".encode()
        salt = hashlib.sha256(f"verified_presence:{participant_id}".encode()).digest()[:16]

        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=cls.TEMPLATE_ENCRYPTION_KEY_SIZE,
            salt=salt,
            iterations=cls.KDF_ITERATIONS,
        )
        return kdf.derive(password)

    @classmethod
    def _fernet(cls, participant_id: str, secret: str) -> Fernet:
        key = cls.generate_encryption_key(participant_id, secret)
        return Fernet(base64.urlsafe_b64encode(key))

    @classmethod
    def encrypt_template(cls, participant_id: str, template: Any, secret: str) -> Tuple[str, str]:
        """
        Encrypt a reference template.

        Returns:
            (encrypted_template, template_hash)
        """
        template_json = json.dumps({'template': template}, separators=(',', ':'))
        encrypted = cls._fernet(participant_id, secret).encrypt(template_json.encode())
        template_hash = hashlib.sha256(encrypted).hexdigest()
        return encrypted.decode(), template_hash

    @classmethod
    def decrypt_template(cls, participant_id: str, encrypted_template: str, secret: str) -> Any:
        """Decrypt a stored reference template."""
        try:
            decrypted = cls._fernet(participant_id, secret).decrypt(encrypted_template.encode())
        except InvalidToken:
            raise VerificationUnavailable("Registered face template could not be decrypted")
        return json.loads(decrypted)['template']
