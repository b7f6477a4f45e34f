"""Example collector service for remote capture proxies.

Run with:
    uvicorn examples.collector_example:app

Endpoints:
    GET  /health                                - liveness
    POST /api/collect                           - record one exchange
    GET  /api/stats                             - corpus counts
    GET  /api/fingerprints/<id>/samples         - NDJSON sample export

Configuration is read from SHAPEKEEPER_* environment variables or a .env
file in the working directory.
"""

import logging

from shapekeeper.adapters.frameworks.fastapi import create_collector_app

logging.basicConfig(
    level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)

app = create_collector_app()
