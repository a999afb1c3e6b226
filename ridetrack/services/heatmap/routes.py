from fastapi import APIRouter, Depends, Query

from ridetrack.services.heatmap.dependencies import get_heatmap_aggregator
from ridetrack.services.heatmap.service import HeatmapAggregator
from ridetrack.shared.models.heatmap_dto import HeatmapResponse

router = APIRouter(tags=["Heatmap"])


@router.get("/api/v1/heatmap", response_model=HeatmapResponse, summary="Тепловая карта водителей")
@router.get("/get_heat_tiles", response_model=HeatmapResponse, include_in_schema=False)
async def get_heat_tiles(
    s: float | None = Query(default=None, description="Окно в секундах (10..600)"),
    aggregator: HeatmapAggregator = Depends(get_heatmap_aggregator),
):
    snapshot = await aggregator.get_snapshot(s)
    return HeatmapResponse(tiles=snapshot.tiles, window_seconds=snapshot.window_seconds)
