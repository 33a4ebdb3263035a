#!/usr/bin/env python3
"""Start the lnpay API with uvicorn. PORT (platform-provided) wins over settings."""
import os

import uvicorn

from lnpay.config import settings

if __name__ == "__main__":
    port = int(os.environ.get("PORT", settings.port))
    print(f"Starting {settings.app_name} API on {settings.host}:{port} ({settings.app_env})")
    uvicorn.run(
        "lnpay.main:app",
        host=settings.host,
        port=port,
        reload=settings.is_development,
        log_level=(settings.log_level or "info").lower(),
    )
