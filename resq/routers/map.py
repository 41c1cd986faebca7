from typing import Optional

from fastapi import APIRouter, Depends

from .. import config, schemas
from ..maps import MapPresentation, build_provider, resolve_origin
from ..matcher import MechanicFilter, filter_mechanics
from ..services import Services, get_services
from .mechanics import mechanic_filter, origin

router = APIRouter(prefix="/map", tags=["Map"])


def _presentation(
    services: Services,
    criteria: MechanicFilter,
    user_location,
    use_default_location: bool,
) -> MapPresentation:
    presentation = MapPresentation(
        build_provider(services.features.map_provider(), config),
        config.DEFAULT_COORDINATES,
        services.analytics,
    )
    location, used_default, location_error = resolve_origin(
        user_location, use_default_location, config.DEFAULT_COORDINATES
    )
    mechanics = filter_mechanics(services.store.list_mechanics(), criteria, location)

    def on_select(mechanic):
        services.analytics.emit("Map", "Select Mechanic", mechanic.name)
        return mechanic

    presentation.render(location, mechanics, on_select, used_default, location_error)
    return presentation


@router.get("/", response_model=schemas.MapView)
def get_map(
    use_default_location: bool = True,
    criteria: MechanicFilter = Depends(mechanic_filter),
    user_location=Depends(origin),
    services: Services = Depends(get_services),
):
    return _presentation(services, criteria, user_location, use_default_location).view()


@router.post("/markers/{marker_id}/click", response_model=Optional[schemas.MechanicCandidate])
def click_marker(
    marker_id: str,
    use_default_location: bool = True,
    criteria: MechanicFilter = Depends(mechanic_filter),
    user_location=Depends(origin),
    services: Services = Depends(get_services),
):
    return _presentation(services, criteria, user_location, use_default_location).click(marker_id)
