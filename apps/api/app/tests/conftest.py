from __future__ import annotations

import os

# Settings are read once per process; pin a local database and keep every
# external integration switched off before the app modules import them.
os.environ.setdefault("PG_DSN", "sqlite:///./test_contractor_profiles.db")
os.environ["QUEUE_MODE"] = "inline"
os.environ["WAREHOUSE_DSN"] = ""
os.environ["ENRICHMENT_API_URL"] = ""
os.environ["ADMIN_SECRET"] = ""
os.environ["OPENAI_API_KEY"] = ""
