# src/api/lambda_handler.py
"""
AWS Lambda handler for the settlement API using Mangum (ASGI adapter).

How it works:
- API Gateway invokes Lambda
- Mangum translates the event into an ASGI request
- FastAPI handles routing (/health, /fees/*, /policies/*, /escrow, ...)

State:
- The settlement service is built at cold start and cached for warm invocations.
  Set RECORD_STORE_PATH (e.g. under /tmp) to keep records in a JSON file store;
  otherwise they live only as long as the container.
"""

from __future__ import annotations

import os

from mangum import Mangum

from src.api.app import app, get_service


_PRELOAD_SERVICE = os.getenv("PRELOAD_SERVICE", "true").lower() in {"1", "true", "yes"}

if _PRELOAD_SERVICE:
    get_service()


handler = Mangum(app, lifespan="off")
