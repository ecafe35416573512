"""
HTTP surface of the MTR exporter.

This module builds the FastAPI application that serves the collected metrics
to Prometheus, plus a small JSON API with the latest trace per target.
"""

import logging
from typing import List

from fastapi import FastAPI, HTTPException
from fastapi.responses import HTMLResponse, Response

from exporter import __version__
from exporter.metrics import CONTENT_TYPE, MetricStore
from models import Trace


logger = logging.getLogger(__name__)

LANDING_PAGE = """<html>
<head><title>MTR Exporter</title></head>
<body>
<h1>MTR Exporter</h1>
<p><a href="/metrics">Metrics</a></p>
</body>
</html>"""


def create_app(store: MetricStore) -> FastAPI:
    """
    Create the exporter application around a metric store.

    Args:
        store: MetricStore fed by the collector

    Returns:
        FastAPI application
    """
    app = FastAPI(
        title="MTR Exporter",
        description="Per-hop mtr statistics and path changes for Prometheus",
        version=__version__
    )

    @app.get("/", response_class=HTMLResponse)
    async def index() -> str:
        return LANDING_PAGE

    @app.get("/metrics")
    async def metrics() -> Response:
        """
        Expose all metrics in the Prometheus text format.

        Example Response:
            # HELP mtr_sent packets sent
            # TYPE mtr_sent counter
            mtr_sent{alias="google",server="google.com",hop_id="0",hop_ip="10.0.0.1"} 4.0
        """
        try:
            body = store.render()
        except Exception as e:
            logger.error(f"Error rendering metrics: {e}", exc_info=True)
            raise HTTPException(
                status_code=500,
                detail=f"Internal server error: {str(e)}"
            )
        return Response(content=body, media_type=CONTENT_TYPE)

    @app.get("/api/v1/traces", response_model=List[Trace])
    async def traces() -> List[Trace]:
        """
        Most recent successful trace of every target, sorted by alias.
        """
        return store.latest_traces()

    @app.get("/health")
    async def health_check():
        """
        Health check endpoint.

        Returns basic exporter status information.
        """
        return {
            "status": "healthy",
            "target_count": store.get_trace_count()
        }

    return app
