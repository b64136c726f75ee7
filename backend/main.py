from __future__ import annotations

import logging

from humbug.application import create_app
from humbug.config import settings

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)

app = create_app()
