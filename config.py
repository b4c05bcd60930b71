import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        default_currency: str,
        generated_account_external_id: str,
        generated_account_name: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.default_currency = default_currency
        self.generated_account_external_id = generated_account_external_id
        self.generated_account_name = generated_account_name


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("LEDGER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    database_url = os.getenv("LEDGER_DATABASE_URL")
    if not database_url:
        default_db = _ensure_data_dir() / "ledger.db"
        database_url = f"sqlite:///{default_db}"
    timezone = os.getenv("LEDGER_TIMEZONE", "Europe/Warsaw")
    default_currency = os.getenv("LEDGER_DEFAULT_CURRENCY", "PLN").upper()
    generated_account_external_id = os.getenv(
        "LEDGER_GENERATED_ACCOUNT_EXTERNAL_ID", "recurring-generated"
    )
    generated_account_name = os.getenv(
        "LEDGER_GENERATED_ACCOUNT_NAME", "Recurring expenses"
    )
    return Settings(
        database_url=database_url,
        timezone=timezone,
        default_currency=default_currency,
        generated_account_external_id=generated_account_external_id,
        generated_account_name=generated_account_name,
    )
