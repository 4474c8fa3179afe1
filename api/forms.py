from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException

from api.deps import get_pipeline
from schemas.application import FormFillRequest
from schemas.forms import FormTemplate
from services.pipeline import ApplicationPipeline

router = APIRouter(prefix="/api/forms", tags=["forms"])

MSG_FORM_NOT_FOUND = "Form template not found"


def _template_or_404(pipeline: ApplicationPipeline, name: str) -> FormTemplate:
    try:
        return pipeline.registry.get(name)
    except KeyError:
        raise HTTPException(status_code=404, detail=MSG_FORM_NOT_FOUND)


def _template_to_response(template: FormTemplate) -> dict[str, Any]:
    return {
        "name": template.name,
        "title": template.title,
        "filename": template.filename,
        "fields": [
            {
                "name": f.name,
                "type": f.type.value,
                "label": f.label,
                "required": f.required,
                "aliases": list(f.aliases),
                **(
                    {"rowCount": f.row_count, "columns": [{"name": c.name, "type": c.type.value} for c in f.columns]}
                    if f.is_group
                    else {}
                ),
            }
            for f in template.fields
        ],
    }


@router.get("")
async def list_forms(pipeline: ApplicationPipeline = Depends(get_pipeline)):
    registry = pipeline.registry
    return {
        "forms": [{"name": t.name, "title": t.title, "fieldCount": len(t.fields)} for t in registry.templates()],
        "programs": {p: [t.name for t in registry.templates_for_program(p)] for p in registry.programs()},
    }


@router.get("/{name}")
async def get_form(name: str, pipeline: ApplicationPipeline = Depends(get_pipeline)):
    return _template_to_response(_template_or_404(pipeline, name))


@router.post("/{name}/map")
async def preview_mapping(
    name: str,
    body: dict[str, Any] = Body(...),
    pipeline: ApplicationPipeline = Depends(get_pipeline),
):
    """Deterministic mapping of an arbitrary record (no AI fallback, nothing persisted)."""
    template = _template_or_404(pipeline, name)
    mapping = pipeline.mapper.map_deterministic(body, template)
    return {
        "templateName": mapping.template_name,
        "values": mapping.mapped_values(),
        "sources": {k: (v.value if v else None) for k, v in mapping.sources().items()},
        "unmappedFields": mapping.unmapped_fields,
    }


@router.get("/{name}/inspect")
async def inspect_form(name: str, pipeline: ApplicationPipeline = Depends(get_pipeline)):
    template = _template_or_404(pipeline, name)
    try:
        widgets = await pipeline.filler.inspect_template(template)
    except OSError:
        raise HTTPException(status_code=404, detail=f"Template file {template.filename} not found")
    declared = {n for f in template.fields for n in f.pdf_field_names()}
    present = {w["name"] for w in widgets}
    return {
        "name": template.name,
        "widgets": widgets,
        "missingWidgets": sorted(declared - present),
        "undeclaredWidgets": sorted(present - declared),
    }


async def _fill(pipeline: ApplicationPipeline, name: str, body: FormFillRequest, use_fallback: bool) -> dict[str, Any]:
    _template_or_404(pipeline, name)
    mapping, result = await pipeline.fill_form(
        name, body.data, use_fallback=use_fallback, output_file_name=body.output_file_name
    )
    if not result.success:
        raise HTTPException(status_code=500, detail={"message": "Form filling failed", "error": result.error})
    return {
        "templateName": result.template_name,
        "outputKey": result.output_key,
        "outputUrl": result.output_url,
        "writtenFields": result.written_fields,
        "unmappedFields": result.unmapped_fields,
        "values": mapping.mapped_values(),
        "sources": {k: (v.value if v else None) for k, v in mapping.sources().items()},
        "degradation": mapping.degradation.model_dump(mode="json") if mapping.degradation else None,
        "processingTimeMs": result.processing_time_ms,
    }


@router.post("/{name}/fill")
async def fill_form(name: str, body: FormFillRequest, pipeline: ApplicationPipeline = Depends(get_pipeline)):
    """Fill the template from an arbitrary record with the deterministic passes only."""
    return await _fill(pipeline, name, body, use_fallback=False)


@router.post("/{name}/auto-fill")
async def auto_fill_form(name: str, body: FormFillRequest, pipeline: ApplicationPipeline = Depends(get_pipeline)):
    return await _fill(pipeline, name, body, use_fallback=True)
