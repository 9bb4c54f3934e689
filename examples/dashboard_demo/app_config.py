from dotenv import load_dotenv

from edge_gate import GateSettings

load_dotenv()

# Read once at start-up for values that need a restart anyway (logging,
# early-access password). The gate itself re-reads GateSettings.from_env()
# on every request.
STARTUP_SETTINGS = GateSettings.from_env()

CORS_ORIGINS = [
    "https://localhost:3000",
    "https://127.0.0.1:3000",
]
