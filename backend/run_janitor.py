"""Run the expired-token janitor as a standalone process."""

import logging
import time

from app.config import settings
from app.core.database import SessionLocal
from app.services.auth_service import AuthService
from app.services.token_janitor import TokenJanitor


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
    janitor = TokenJanitor(
        SessionLocal,
        AuthService(settings).purge_expired,
        interval_seconds=settings.TOKEN_PURGE_INTERVAL_SECONDS,
    )
    janitor.start()
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        janitor.stop()


if __name__ == "__main__":
    main()
