# cli/core/config.py
from pathlib import Path
import os

# URL of the Custodia backend
BASE_URL = os.environ.get("CUSTODIA_URL", "http://localhost:8000").rstrip("/")

# CA certificate for TLS verification (used only if the file exists)
CA_CERT = os.environ.get("CUSTODIA_CA_CERT", str(Path(__file__).parent.parent.parent / "certs" / "ca.crt"))

# Must match SESSION_COOKIE_NAME on the server
SESSION_COOKIE_NAME = os.environ.get("CUSTODIA_SESSION_COOKIE", "custodia_session")

# Local state directory (session cookie)
APP_DIR = Path(os.environ.get("CUSTODIA_HOME", str(Path.home() / ".custodia")))

SESSION_FILE = APP_DIR / "session.json"

# Proof login polling
POLL_INTERVAL_SECONDS = 2.0
POLL_TIMEOUT_SECONDS = 120

APP_DIR.mkdir(parents=True, exist_ok=True)
