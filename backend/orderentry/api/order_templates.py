"""
Template authoring endpoints.

Writes are canonicalized before they are stored, so templates saved here
never need the legacy paths of the normalizer.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Response
from pydantic import Field
from sqlalchemy.orm import Session

from orderentry.core.database import get_db
from orderentry.models.entry_schemas import CamelModel
from orderentry.services.template_service import TemplateService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/order-templates", tags=["order-templates"])


class TemplateCreateRequest(CamelModel):
    template_name: str = Field(min_length=1, max_length=100)
    template_type: str
    fields_config: Any
    is_active: bool = True


class TemplateUpdateRequest(CamelModel):
    template_name: Optional[str] = Field(default=None, max_length=100)
    template_type: Optional[str] = None
    fields_config: Optional[Any] = None
    is_active: Optional[bool] = None


@router.get("")
async def list_order_templates(db: Session = Depends(get_db)):
    """All templates, active or not"""
    templates = TemplateService(db).list_templates()
    return [TemplateService.to_dict(t) for t in templates]


@router.get("/{template_id}")
async def get_order_template(template_id: int, db: Session = Depends(get_db)):
    return TemplateService.to_dict(TemplateService(db).get_template(template_id))


@router.post("", status_code=201)
async def create_order_template(request: TemplateCreateRequest, db: Session = Depends(get_db)):
    """
    Create a template.

    fieldsConfig may be a field list, `{"fields": [...]}`, a sectioned legacy
    map, or a grid config; it is stored as `{"fields"}` or `{"gridConfig"}`.
    """
    template = TemplateService(db).create_template(
        template_name=request.template_name,
        template_type=request.template_type,
        fields_config=request.fields_config,
        is_active=request.is_active,
    )
    return TemplateService.to_dict(template)


@router.put("/{template_id}")
async def update_order_template(
    template_id: int,
    request: TemplateUpdateRequest,
    db: Session = Depends(get_db)
):
    """Partial update; a version snapshot is recorded when anything changed"""
    changes = request.model_dump(by_alias=True, exclude_unset=True)
    template = TemplateService(db).update_template(template_id, changes)
    return TemplateService.to_dict(template)


@router.delete("/{template_id}", status_code=204)
async def delete_order_template(template_id: int, db: Session = Depends(get_db)):
    TemplateService(db).delete_template(template_id)
    return Response(
        status_code=204,
        headers={"Cache-Control": "no-cache, no-store, must-revalidate"}
    )


@router.patch("/{template_id}/toggle-status")
async def toggle_order_template_status(
    template_id: int,
    payload: Dict[str, Any] = Body(...),
    db: Session = Depends(get_db)
):
    """Activate or deactivate a template. Body: {"isActive": true|false}"""
    template = TemplateService(db).toggle_status(template_id, payload.get("isActive"))
    return TemplateService.to_dict(template)


@router.get("/{template_id}/versions")
async def list_template_versions(template_id: int, db: Session = Depends(get_db)):
    versions = TemplateService(db).list_versions(template_id)
    return {
        "templateId": template_id,
        "versions": [
            {
                "id": v.id,
                "versionNumber": v.version_number,
                "changes": v.changes or [],
                "templateConfig": v.template_config,
                "createdAt": v.created_at.isoformat() if v.created_at else None,
            }
            for v in versions
        ]
    }
