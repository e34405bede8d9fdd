from fastapi import APIRouter, Request, Response

from storyline.core.metrics import METRICS, token_bus_subscribers


router = APIRouter(tags=["metrics"])


@router.get("/metrics")
def metrics_endpoint(request: Request):
    bus = getattr(request.app.state, "bus", None)
    if bus is not None:
        token_bus_subscribers.set(bus.subscriber_count())
    return Response(content=METRICS.export_prometheus(), media_type="text/plain; version=0.0.4")
