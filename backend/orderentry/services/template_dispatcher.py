"""
Template Dispatcher

Resolves a stored template into exactly one canonical definition,
`GeneralTemplate` or `GridTemplate`, once per load. Everything downstream
branches on the definition's type, never on raw type strings.
"""

import logging
from typing import Any, Mapping, Optional, Union

from orderentry.models.entry_schemas import (
    GeneralTemplate,
    GridTemplate,
    SurfaceKind,
    TemplateDefinition,
)
from orderentry.models.template import OrderTemplate
from orderentry.services.reference_data import ReferenceData, apply_reference_data
from orderentry.services.schema_normalizer import SchemaNormalizer

logger = logging.getLogger(__name__)

TemplateSource = Union[OrderTemplate, Mapping[str, Any], GeneralTemplate, GridTemplate]


def _type_code(template: TemplateSource) -> Optional[str]:
    if isinstance(template, OrderTemplate):
        return template.template_type
    if isinstance(template, Mapping):
        return template.get("templateType") or template.get("template_type") or template.get("type")
    return None


def select_surface(template: TemplateSource) -> SurfaceKind:
    """
    Pick the entry surface for a template.

    Legacy type codes map onto general or grid; anything unknown is shown
    as a general form.
    """
    if isinstance(template, GridTemplate):
        return SurfaceKind.GRID
    if isinstance(template, GeneralTemplate):
        return SurfaceKind.GENERAL

    code = _type_code(template)
    kind = SurfaceKind.from_type_code(code)
    if kind is None:
        logger.warning(f"Unknown template type '{code}', using general form")
        return SurfaceKind.GENERAL
    return kind


def load_definition(
    template: TemplateSource,
    normalizer: Optional[SchemaNormalizer] = None,
    reference: Optional[ReferenceData] = None,
) -> TemplateDefinition:
    """
    Build the canonical definition for a stored template.

    Args:
        template: OrderTemplate row or its JSON representation
        normalizer: SchemaNormalizer to use (a fresh one by default)
        reference: Reference data merged into option lists

    Returns:
        GeneralTemplate or GridTemplate
    """
    if isinstance(template, (GeneralTemplate, GridTemplate)):
        definition = template
    else:
        normalizer = normalizer or SchemaNormalizer()
        kind = select_surface(template)

        if isinstance(template, OrderTemplate):
            template_id = template.id
            name = template.template_name
            is_active = bool(template.is_active) if template.is_active is not None else True
            raw = template.fields_config
            separate_grid = None
        else:
            template_id = template.get("id")
            name = template.get("templateName") or template.get("name") or ""
            is_active = bool(template.get("isActive", True))
            raw = template.get("fieldsConfig", template.get("fields_config"))
            separate_grid = template.get("handsontableConfig") or template.get("gridConfig")

        if kind == SurfaceKind.GRID:
            # A grid config stored beside fieldsConfig wins over the embedded one
            payload = {"gridConfig": separate_grid} if isinstance(separate_grid, Mapping) else raw
            definition = GridTemplate(
                id=template_id,
                name=name,
                is_active=is_active,
                grid_config=normalizer.normalize(payload, kind),
            )
        else:
            definition = GeneralTemplate(
                id=template_id,
                name=name,
                is_active=is_active,
                fields=normalizer.normalize(raw, kind),
            )

    if reference is not None:
        definition = apply_reference_data(definition, reference)

    logger.debug(f"Resolved template {definition.id} ('{definition.name}') as {definition.kind}")
    return definition
