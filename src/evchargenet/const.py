"""Shared constants."""

STATIONS_COLLECTION = "stations"
ACTIVE_SESSIONS_COLLECTION = "activeSessions"
BOOKINGS_COLLECTION = "bookings"
REVIEWS_COLLECTION = "reviews"
USERS_COLLECTION = "users"

# Simulated charger output shared by every station.
CHARGING_POWER_KW = 25
LOYALTY_POINTS_PER_SESSION = 10

DEFAULT_VEHICLE = "Other"

MIN_RATING = 1
MAX_RATING = 5
