#!/usr/bin/env python3
"""
Run the otpgate API under uvicorn.
"""

import os

import uvicorn

from otpgate.config import LOG_LEVEL, TRUST_PROXY_HEADERS

if __name__ == "__main__":
    uvicorn.run(
        "otpgate.main:app",
        host=os.getenv("API_HOST", "127.0.0.1"),
        port=int(os.getenv("API_PORT", "8000")),
        reload=os.getenv("API_RELOAD", "false").lower() == "true",
        log_level=LOG_LEVEL.lower(),
        proxy_headers=TRUST_PROXY_HEADERS,
    )
