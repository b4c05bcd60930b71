import os

os.environ.setdefault("LEDGER_DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("LEDGER_TIMEZONE", "Europe/Warsaw")
os.environ.setdefault("LEDGER_DEFAULT_CURRENCY", "PLN")
