"""Base configuration shared by every environment."""
import os
from datetime import timedelta


class Config:
    """Base configuration."""
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-secret-key-change-in-production'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ECHO = False

    # JWT Configuration (tokens are minted by the identity service)
    JWT_SECRET_KEY = os.environ.get('JWT_SECRET_KEY') or 'jwt-secret-key-change-in-production'
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(hours=2)
    JWT_ALGORITHM = 'HS256'

    # CORS
    CORS_ORIGINS = ["http://localhost:3000", "http://localhost:5173"]

    # Rate Limiting
    RATELIMIT_STORAGE_URI = os.environ.get('REDIS_URL') or 'memory://'
    RATELIMIT_DEFAULT = "200 per day, 50 per hour"
    MARKING_RATE_LIMIT = "10 per minute"

    # Geofence
    DEFAULT_RADIUS_METERS = 100.0
    REQUIRE_LOCATION = os.environ.get('REQUIRE_LOCATION', 'false').lower() == 'true'

    # Biometric matcher
    BIOMETRIC_BACKEND = os.environ.get('BIOMETRIC_BACKEND', 'descriptor')
    FACE_MATCH_THRESHOLD = 0.6
    FACE_MATCHER_URL = os.environ.get('FACE_MATCHER_URL')
    FACE_MATCHER_TIMEOUT = 10  # seconds

    # Image payloads arrive as base64 data URLs
    MAX_CONTENT_LENGTH = 10 * 1024 * 1024  # 10MB

    # Logging
    LOG_LEVEL = 'INFO'
    LOG_FILE = 'logs/app.log'
