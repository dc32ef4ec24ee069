import os

MONGO_URL = os.getenv("MONGO_URL")
MONGO_DB = os.getenv("MONGO_DB", "fleettrack")

# "mongo" or "memory"
STORE_BACKEND = os.getenv("STORE_BACKEND", "mongo").lower()

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

HEARTBEAT_TIMEOUT_S = int(os.getenv("HEARTBEAT_TIMEOUT_S", "60"))
HEARTBEAT_INTERVAL_S = int(os.getenv("HEARTBEAT_INTERVAL_S", "20"))
PRESENCE_SWEEP_S = int(os.getenv("PRESENCE_SWEEP_S", "10"))

MOVEMENT_THRESHOLD_M = float(os.getenv("MOVEMENT_THRESHOLD_M", "20"))

# "reject" or "resort"
ORDERING_POLICY = os.getenv("ORDERING_POLICY", "reject").lower()

# Allow http://localhost:anyport and http://127.0.0.1:anyport
CORS_ORIGIN_REGEX = os.getenv("CORS_ORIGIN_REGEX", r"^http://(localhost|127\.0\.0\.1)(:\d+)?$")

HEARTBEAT_TIMEOUT_MS = HEARTBEAT_TIMEOUT_S * 1000

SYNC_THRESHOLD_MS = {
    "FAST": 5_000,
    "MEDIUM": 15_000,
    "SLOW": 60_000,
}

# used only when a completed trip has no recorded samples at all
ASSUMED_AVERAGE_SPEED_KMH = 40.0
