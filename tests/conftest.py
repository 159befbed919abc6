import os
import sys
import tempfile

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

# The stores bind to the database path at import time, so this has to run
# before any test module imports the app.
_db_dir = tempfile.mkdtemp(prefix="acheiumpro-tests-")
os.environ["ACHEIUMPRO_DB_PATH"] = os.path.join(_db_dir, "acheiumpro.sqlite3")
os.environ["NOTIFICATION_CHANNELS"] = "in_app"
os.environ.setdefault("AUTH_SECRET", "test-secret")
for name in ("FIREBASE_CREDENTIALS_PATH", "SMTP_HOST", "TWILIO_ACCOUNT_SID", "ADMIN_EMAIL", "ADMIN_PASSWORD"):
    os.environ[name] = ""
