#!/usr/bin/env python
"""Serve the stock ledger API (PORT and LOG_LEVEL come from the environment)."""
import os

import uvicorn

from stockledger.core.config import get_settings


def main():
    settings = get_settings()
    port = int(os.environ.get("PORT", 8000))
    print(f"Stock ledger ({settings.ENVIRONMENT}) listening on :{port}")
    uvicorn.run("stockledger.main:app", host="0.0.0.0", port=port, log_level=settings.LOG_LEVEL.lower())


if __name__ == "__main__":
    main()
