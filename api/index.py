from mangum import Mangum
from pathlib import Path
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from payledger.api import create_app
from payledger.config import Settings

# Serverless filesystems are only writable under /tmp.
settings = Settings.from_env()
if not os.getenv("DATA_DIR"):
    settings.data_dir = Path("/tmp/payledger/data")
if not os.getenv("UPLOADS_DIR"):
    settings.uploads_dir = Path("/tmp/payledger/uploads")

app = create_app(settings)

handler = Mangum(app)
