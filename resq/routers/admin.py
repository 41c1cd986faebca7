from typing import List

from fastapi import APIRouter, Depends

from .. import schemas
from ..auth import Identity, require_admin
from ..services import Services, get_services

router = APIRouter(prefix="/admin", tags=["Admin"])


@router.put("/mechanics/{mechanic_id}", response_model=schemas.MechanicOut)
def upsert_mechanic(
    mechanic_id: str,
    mechanic: schemas.MechanicIn,
    _: Identity = Depends(require_admin),
    services: Services = Depends(get_services),
):
    return services.store.upsert_mechanic(mechanic_id, mechanic)


@router.get("/features", response_model=schemas.FeaturesOut)
def get_features(services: Services = Depends(get_services)):
    features = services.features
    return schemas.FeaturesOut(map_provider=features.map_provider(), features=features.snapshot())


@router.put("/features/{feature_id}", response_model=schemas.FeaturesOut)
def set_feature(
    feature_id: str,
    update: schemas.FeatureUpdate,
    _: Identity = Depends(require_admin),
    services: Services = Depends(get_services),
):
    features = services.features
    features.set_enabled(feature_id, update.enabled)
    return schemas.FeaturesOut(map_provider=features.map_provider(), features=features.snapshot())


@router.get("/analytics", response_model=List[schemas.AnalyticsEvent])
def recent_events(
    _: Identity = Depends(require_admin),
    services: Services = Depends(get_services),
):
    return services.analytics.recent()
