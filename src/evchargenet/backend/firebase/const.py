"""Constants for the Firebase backend."""

FIRESTORE_BASE_URL = "https://firestore.googleapis.com/v1"
IDENTITY_TOOLKIT_BASE_URL = "https://identitytoolkit.googleapis.com/v1"
SECURE_TOKEN_URL = "https://securetoken.googleapis.com/v1/token"

DEFAULT_DATABASE = "(default)"
DEFAULT_POLL_INTERVAL = 5.0

SIGN_IN_ENDPOINT = "/accounts:signInWithPassword"
SIGN_UP_ENDPOINT = "/accounts:signUp"

REQUEST_TIME = "REQUEST_TIME"
ABORTED_STATUS = "ABORTED"
ALREADY_EXISTS_STATUS = "ALREADY_EXISTS"

DEFAULT_HEADERS = {
    "Accept": "application/json",
    "User-Agent": "evchargenet-firebase",
}

# Identity Toolkit error messages, matched on the part before " : ".
AUTH_ERROR_CODES = {
    "EMAIL_EXISTS": "email_exists",
    "EMAIL_NOT_FOUND": "invalid_credentials",
    "INVALID_PASSWORD": "invalid_credentials",
    "INVALID_LOGIN_CREDENTIALS": "invalid_credentials",
    "WEAK_PASSWORD": "weak_password",
    "USER_DISABLED": "user_disabled",
    "TOO_MANY_ATTEMPTS_TRY_LATER": "too_many_attempts",
    "TOKEN_EXPIRED": "token_expired",
    "INVALID_REFRESH_TOKEN": "token_expired",
    "INVALID_ID_TOKEN": "token_expired",
    "OPERATION_NOT_ALLOWED": "operation_not_allowed",
}

AUTH_VALIDATION_ERRORS = frozenset({"INVALID_EMAIL", "MISSING_PASSWORD", "MISSING_EMAIL"})
