from fastapi import Request

from ridetrack.services.heatmap.service import HeatmapAggregator


def get_heatmap_aggregator(request: Request) -> HeatmapAggregator:
    aggregator = getattr(request.app.state, "heatmap_aggregator", None)
    if aggregator is None:
        raise RuntimeError("Service not initialized")
    return aggregator
