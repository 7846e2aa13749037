import os
from dotenv import load_dotenv

# .env dosyasını yükle
load_dotenv()


class Settings:
    """
    Memory engine settings read from environment variables.
    """
    # Veritabanı
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./memory_engine.db")

    # Internal cron callers (cleanup, producer writes)
    INTERNAL_CRON_SECRET = os.getenv("INTERNAL_CRON_SECRET")

    # Context bounds
    CONTEXT_CATEGORY_CAP = int(os.getenv("CONTEXT_CATEGORY_CAP", "200"))
    CONTEXT_FETCH_TIMEOUT_SECONDS = float(os.getenv("CONTEXT_FETCH_TIMEOUT_SECONDS", "10"))
    CONTEXT_MAX_WORKERS = int(os.getenv("CONTEXT_MAX_WORKERS", "6"))

    # Memory lifecycle
    MEMORY_HISTORY_RETENTION_DAYS = int(os.getenv("MEMORY_HISTORY_RETENTION_DAYS", "90"))
    PROVENANCE_WINDOW_DAYS = int(os.getenv("PROVENANCE_WINDOW_DAYS", "14"))

    @classmethod
    def validate(cls):
        """
        Kritik değişkenlerin yüklendiğini doğrular.
        """
        missing = []
        if not cls.INTERNAL_CRON_SECRET or len(cls.INTERNAL_CRON_SECRET) < 16:
            missing.append("INTERNAL_CRON_SECRET (min 16 chars)")

        if missing:
            raise ValueError(f"Eksik çevresel değişkenler: {', '.join(missing)}")


# Ayarları doğrula (Import edildiğinde çalışır)
try:
    Settings.validate()
except ValueError as e:
    print(f"UYARI: {e}")
