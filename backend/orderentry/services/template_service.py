"""
Template Service

Reads templates for entry sessions and writes them for the authoring
surface. Reads tolerate every legacy shape (through SchemaNormalizer);
writes only ever persist the canonical shape:

    {"fields": [...]}       general templates
    {"gridConfig": {...}}   grid templates

Each save also records a TemplateVersion snapshot.
"""

import json
import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from orderentry.core.exceptions import NotFoundError, SchemaError, ValidationError
from orderentry.data.templates import BUILTIN_TEMPLATES
from orderentry.models.entry_schemas import (
    GridConfig,
    SurfaceKind,
    TemplateDefinition,
    TemplateField,
)
from orderentry.models.template import OrderTemplate, TemplateVersion
from orderentry.services.reference_data import ReferenceData
from orderentry.services.schema_normalizer import LEGACY_SECTIONS, SchemaNormalizer
from orderentry.services.template_dispatcher import load_definition, select_surface

logger = logging.getLogger(__name__)

WRITABLE_KEYS = ("templateName", "templateType", "fieldsConfig")


def _first_error(error: PydanticValidationError) -> str:
    detail = error.errors()[0]
    location = ".".join(str(part) for part in detail.get("loc", ()))
    return f"{location}: {detail['msg']}" if location else detail["msg"]


class TemplateService:
    """Persistence and canonicalization of order templates."""

    def __init__(self, db: Session, normalizer: Optional[SchemaNormalizer] = None):
        self.db = db
        self.normalizer = normalizer or SchemaNormalizer()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_templates(self, active_only: bool = False) -> List[OrderTemplate]:
        query = self.db.query(OrderTemplate)
        if active_only:
            query = query.filter(OrderTemplate.is_active.is_(True))
        return query.order_by(OrderTemplate.template_name).all()

    def get_template(self, template_id: int) -> OrderTemplate:
        template = self.db.query(OrderTemplate).filter(OrderTemplate.id == template_id).first()
        if not template:
            raise NotFoundError("Template", str(template_id))
        return template

    def get_definition(self, template_id: int, reference: Optional[ReferenceData] = None) -> TemplateDefinition:
        return load_definition(self.get_template(template_id), self.normalizer, reference)

    def list_versions(self, template_id: int) -> List[TemplateVersion]:
        return list(self.get_template(template_id).versions)

    @staticmethod
    def summarize(template: OrderTemplate) -> Dict[str, Any]:
        return {
            "id": template.id,
            "templateName": template.template_name,
            "templateType": template.template_type,
            "surface": select_surface(template).value,
            "isActive": bool(template.is_active),
            "updatedAt": template.updated_at.isoformat() if template.updated_at else None,
        }

    @staticmethod
    def to_dict(template: OrderTemplate) -> Dict[str, Any]:
        data = TemplateService.summarize(template)
        data["fieldsConfig"] = template.fields_config
        data["createdAt"] = template.created_at.isoformat() if template.created_at else None
        return data

    # ------------------------------------------------------------------
    # Canonical shape
    # ------------------------------------------------------------------

    def canonical_config(self, template_type: str, fields_config: Any) -> Dict[str, Any]:
        """
        Validate an authored config and return it in canonical shape.

        Raises:
            SchemaError: when the config cannot be used for this template type
        """
        kind = SurfaceKind.from_type_code(template_type)
        if kind is None:
            raise SchemaError(f"Unknown template type '{template_type}'")

        if isinstance(fields_config, str):
            try:
                fields_config = json.loads(fields_config)
            except ValueError as e:
                raise SchemaError(f"fieldsConfig is not valid JSON: {e}")

        if kind == SurfaceKind.GRID:
            return {"gridConfig": self._canonical_grid(fields_config)}
        return {"fields": self._canonical_fields(fields_config)}

    def _canonical_grid(self, payload: Any) -> Dict[str, Any]:
        candidate = None
        if isinstance(payload, dict):
            candidate = payload.get("gridConfig") or payload.get("handsontableConfig")
            if candidate is None and "columns" in payload:
                candidate = payload
        if not isinstance(candidate, dict):
            raise SchemaError("Grid templates need a gridConfig with columns")

        try:
            config = GridConfig.model_validate(candidate)
        except PydanticValidationError as e:
            raise SchemaError(f"Invalid grid config: {_first_error(e)}")
        if not config.columns:
            raise SchemaError("A grid template needs at least one column")
        return config.model_dump(by_alias=True, exclude_none=True)

    def _canonical_fields(self, payload: Any) -> List[Dict[str, Any]]:
        if isinstance(payload, dict) and any(key in payload for key, _ in LEGACY_SECTIONS):
            # Sectioned configs are converted once, on write
            fields = self.normalizer.normalize_fields(payload)
            return [f.model_dump(by_alias=True, exclude_none=True) for f in fields]

        if isinstance(payload, dict) and isinstance(payload.get("fields"), list):
            raw_fields = payload["fields"]
        elif isinstance(payload, list):
            raw_fields = payload
        else:
            raise SchemaError("General templates need a list of fields")

        fields: List[TemplateField] = []
        seen = set()
        for index, raw in enumerate(raw_fields):
            if not isinstance(raw, dict):
                raise SchemaError(f"Field #{index} must be an object")
            data = dict(raw)
            data.setdefault("id", str(data.get("fieldName") or f"field_{index}"))
            data.setdefault("sortOrder", index)
            try:
                template_field = TemplateField.model_validate(data)
            except PydanticValidationError as e:
                raise SchemaError(f"Field #{index}: {_first_error(e)}")
            if template_field.field_name in seen:
                raise SchemaError(f"Duplicate fieldName '{template_field.field_name}'")
            seen.add(template_field.field_name)
            fields.append(template_field)

        return [f.model_dump(by_alias=True, exclude_none=True) for f in fields]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_template(self, template_name: str, template_type: str, fields_config: Any,
                        is_active: bool = True) -> OrderTemplate:
        if not template_name or not template_name.strip():
            raise ValidationError("templateName is required")

        template = OrderTemplate(
            template_name=template_name.strip(),
            template_type=template_type,
            fields_config=self.canonical_config(template_type, fields_config),
            is_active=is_active,
        )
        self.db.add(template)
        self.db.flush()
        self._record_version(template, list(WRITABLE_KEYS))
        self.db.commit()
        self.db.refresh(template)

        logger.info(f"Created template '{template.template_name}' ({template.template_type})")
        return template

    def update_template(self, template_id: int, changes: Dict[str, Any]) -> OrderTemplate:
        """
        Apply a partial update and snapshot the result.

        Args:
            template_id: Template to update
            changes: Any of templateName, templateType, fieldsConfig, isActive
        """
        template = self.get_template(template_id)
        before = template.snapshot()

        if "templateName" in changes:
            name = changes["templateName"]
            if not name or not str(name).strip():
                raise ValidationError("templateName is required")
            template.template_name = str(name).strip()

        template_type = changes.get("templateType", template.template_type)
        if "templateType" in changes or "fieldsConfig" in changes:
            config = changes.get("fieldsConfig", template.fields_config)
            if "fieldsConfig" not in changes and select_surface({"templateType": template_type}) != select_surface(template):
                raise SchemaError("Changing between general and grid needs a new fieldsConfig")
            template.fields_config = self.canonical_config(template_type, config)
            template.template_type = template_type

        if "isActive" in changes:
            template.is_active = bool(changes["isActive"])

        changed = [key for key, value in template.snapshot().items() if before.get(key) != value]
        if changed:
            self._record_version(template, changed)
        self.db.commit()
        self.db.refresh(template)

        logger.info(f"Updated template {template_id}: {', '.join(changed) or 'no changes'}")
        return template

    def delete_template(self, template_id: int) -> None:
        template = self.get_template(template_id)
        self.db.delete(template)
        self.db.commit()
        logger.info(f"Deleted template {template_id}")

    def toggle_status(self, template_id: int, is_active: bool) -> OrderTemplate:
        if not isinstance(is_active, bool):
            raise ValidationError("isActive must be a boolean value")
        template = self.get_template(template_id)
        template.is_active = is_active
        self.db.commit()
        self.db.refresh(template)
        logger.info(f"Template {template_id} {'activated' if is_active else 'deactivated'}")
        return template

    def _record_version(self, template: OrderTemplate, changes: List[str]) -> TemplateVersion:
        count = len(template.versions)
        version = TemplateVersion(
            version_number=f"1.{count}",
            changes=changes,
            template_config=template.snapshot(),
        )
        template.versions.append(version)
        return version

    # ------------------------------------------------------------------
    # Seeding
    # ------------------------------------------------------------------

    def seed_builtin_templates(self) -> List[OrderTemplate]:
        """Insert the built-in templates that are not there yet, stored as authored."""
        seeded = []
        for template_data in BUILTIN_TEMPLATES:
            existing = self.db.query(OrderTemplate).filter(
                OrderTemplate.template_name == template_data["templateName"]
            ).first()

            if existing:
                logger.debug(f"Template '{template_data['templateName']}' already exists, skipping")
                seeded.append(existing)
                continue

            template = OrderTemplate(
                template_name=template_data["templateName"],
                template_type=template_data["templateType"],
                fields_config=template_data["fieldsConfig"],
                is_active=True,
            )
            self.db.add(template)
            seeded.append(template)
            logger.info(f"Created template: {template.template_name}")

        self.db.commit()
        for template in seeded:
            self.db.refresh(template)
        return seeded
