import os
import tempfile

# Settings are cached on first import of config; point them at throwaway
# locations and a cheap bcrypt cost before any project module loads.
os.environ.setdefault("FINANCE_DATA_DIR", tempfile.mkdtemp(prefix="finance-tests-"))
os.environ.setdefault("FINANCE_BCRYPT_ROUNDS", "4")
