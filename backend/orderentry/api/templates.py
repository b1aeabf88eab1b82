from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from orderentry.core.database import get_db
from orderentry.services.reference_data import ReferenceDataProvider, get_reference_provider
from orderentry.services.template_service import TemplateService
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/templates", tags=["templates"])


@router.get("")
async def list_templates(db: Session = Depends(get_db)):
    """
    List the templates an order can be entered with.

    Only active templates are returned. `surface` tells the client which
    entry surface the template mounts (general or grid), legacy type codes
    already resolved.
    """
    templates = TemplateService(db).list_templates(active_only=True)
    return {"templates": [TemplateService.summarize(t) for t in templates]}


@router.get("/{template_id}")
async def get_template(
    template_id: int,
    db: Session = Depends(get_db),
    provider: ReferenceDataProvider = Depends(get_reference_provider)
):
    """Full template: the stored fieldsConfig and its normalized definition"""
    service = TemplateService(db)
    template = service.get_template(template_id)
    definition = service.get_definition(template_id, provider.get_reference_data())

    data = TemplateService.to_dict(template)
    data["definition"] = definition.model_dump(by_alias=True, exclude_none=True)
    return data
