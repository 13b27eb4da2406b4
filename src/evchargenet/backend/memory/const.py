"""Constants for the in-memory backend."""

MIN_PASSWORD_LENGTH = 6
PASSWORD_SCHEMES = ("pbkdf2_sha256",)
