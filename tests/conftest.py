import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# In-memory sqlite, tables created on app startup, no rate limiting
os.environ["DATABASE_URL"] = ""
os.environ["INIT_DB_ON_STARTUP"] = "true"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["GATEWAY_ENABLED"] = "false"
