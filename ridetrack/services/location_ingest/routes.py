from fastapi import APIRouter, Depends

from ridetrack.services.location_ingest.dependencies import get_ingest_service
from ridetrack.services.location_ingest.service import LocationIngestService
from ridetrack.shared.models.location_dto import PingRequest, PingResponse

router = APIRouter(tags=["Location"])


@router.post("/api/v1/location", response_model=PingResponse, summary="Обновить позицию водителя")
@router.post("/update_driver_location", response_model=PingResponse, include_in_schema=False)
async def update_driver_location(
    ping: PingRequest,
    service: LocationIngestService = Depends(get_ingest_service),
):
    """
    Принимает ping водителя.

    dedup=true означает, что ping попал в тот же тайл в пределах окна
    и не сохранён.
    """
    result = await service.submit_ping(ping.driver_id, ping.lat, ping.lng, ping.accuracy)
    return PingResponse(dedup=result.deduped, area_key=result.tile_key)
