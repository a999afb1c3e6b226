from fastapi import Request

from ridetrack.services.location_ingest.service import LocationIngestService


def get_ingest_service(request: Request) -> LocationIngestService:
    service = getattr(request.app.state, "ingest_service", None)
    if service is None:
        raise RuntimeError("Service not initialized")
    return service
