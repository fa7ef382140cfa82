"""Static workflow registry keyed by ``{category_family}.{purpose}.v{n}``."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Type, Union

from pydantic import ValidationError

from catalogstudio.generation.assembler import PromptContext, assemble_variation_prompts
from catalogstudio.generation.errors import InputValidationError, UnsupportedWorkflowError
from catalogstudio.generation.types import CategoryFamily, GenerationInput, Purpose


class WorkflowKey(str, Enum):
    APPAREL_CATALOG = "apparel.catalog.v1"
    APPAREL_ADS = "apparel.ads.v1"
    APPAREL_INFOGRAPHICS = "apparel.infographics.v1"
    NON_APPAREL_CATALOG = "non_apparel.catalog.v1"
    NON_APPAREL_ADS = "non_apparel.ads.v1"
    NON_APPAREL_INFOGRAPHICS = "non_apparel.infographics.v1"


class ExecutorKind(str, Enum):
    INLINE = "inline"
    APPAREL_MULTISTEP = "apparel_multistep"


@dataclass(frozen=True)
class Workflow:
    key: WorkflowKey
    family: CategoryFamily
    purpose: Purpose
    executor: ExecutorKind
    input_schema: Type[GenerationInput] = GenerationInput

    @property
    def uses_anchor(self) -> bool:
        return self.family == CategoryFamily.NON_APPAREL

    def validate_input(self, payload: Mapping[str, Any]) -> GenerationInput:
        try:
            return self.input_schema.model_validate(dict(payload))
        except ValidationError as exc:
            first = exc.errors()[0] if exc.errors() else {}
            location = ".".join(str(item) for item in first.get("loc", ())) or None
            raise InputValidationError(
                f"invalid_generation_input {first.get('msg', 'validation failed')}",
                field=location,
            ) from exc

    def build_prompts(
        self,
        generation_input: GenerationInput,
        *,
        product_title: str = "",
        style_appendix: str = "",
    ) -> List[str]:
        """Prompts known at admission time, before any resolver has run."""

        context = PromptContext(
            family=self.family,
            purpose=self.purpose,
            product_title=product_title,
            style_appendix=style_appendix,
            model_enabled=generation_input.model_enabled,
            model_reference_supplied=generation_input.model_image is not None,
        )
        return assemble_variation_prompts(
            context,
            generation_input,
            count=generation_input.number_of_variations,
            use_anchor=self.uses_anchor,
        )


def _build_registry() -> Mapping[WorkflowKey, Workflow]:
    definitions = (
        Workflow(WorkflowKey.APPAREL_CATALOG, CategoryFamily.APPAREL, Purpose.CATALOG, ExecutorKind.APPAREL_MULTISTEP),
        Workflow(WorkflowKey.APPAREL_ADS, CategoryFamily.APPAREL, Purpose.ADS, ExecutorKind.INLINE),
        Workflow(WorkflowKey.APPAREL_INFOGRAPHICS, CategoryFamily.APPAREL, Purpose.INFOGRAPHICS, ExecutorKind.INLINE),
        Workflow(WorkflowKey.NON_APPAREL_CATALOG, CategoryFamily.NON_APPAREL, Purpose.CATALOG, ExecutorKind.INLINE),
        Workflow(WorkflowKey.NON_APPAREL_ADS, CategoryFamily.NON_APPAREL, Purpose.ADS, ExecutorKind.INLINE),
        Workflow(
            WorkflowKey.NON_APPAREL_INFOGRAPHICS,
            CategoryFamily.NON_APPAREL,
            Purpose.INFOGRAPHICS,
            ExecutorKind.INLINE,
        ),
    )
    registry: Dict[WorkflowKey, Workflow] = {}
    for workflow in definitions:
        expected = f"{workflow.family.value}.{workflow.purpose.value}.v1"
        if workflow.key.value != expected:
            raise RuntimeError(f"workflow_key_mismatch key={workflow.key.value} expected={expected}")
        registry[workflow.key] = workflow

    missing = sorted(key.value for key in WorkflowKey if key not in registry)
    if missing:
        raise RuntimeError(f"workflow_registry_incomplete missing={','.join(missing)}")
    return MappingProxyType(registry)


WORKFLOW_REGISTRY: Mapping[WorkflowKey, Workflow] = _build_registry()


def category_family(category: Optional[str]) -> CategoryFamily:
    if (category or "").strip().lower() == "apparel":
        return CategoryFamily.APPAREL
    return CategoryFamily.NON_APPAREL


def normalize_purpose(purpose: Optional[Union[str, Purpose]]) -> Purpose:
    if isinstance(purpose, Purpose):
        return purpose
    normalized = (purpose or "").strip().lower()
    for item in Purpose:
        if item.value == normalized:
            return item
    return Purpose.CATALOG


def resolve_workflow_key(category: Optional[str], purpose: Optional[Union[str, Purpose]]) -> str:
    return f"{category_family(category).value}.{normalize_purpose(purpose).value}.v1"


def get_workflow(key: Union[str, WorkflowKey]) -> Workflow:
    try:
        workflow_key = WorkflowKey(key)
    except ValueError as exc:
        raise UnsupportedWorkflowError(f"unsupported_workflow key={key}", field="schema_key") from exc
    workflow = WORKFLOW_REGISTRY.get(workflow_key)
    if workflow is None:
        raise UnsupportedWorkflowError(f"unsupported_workflow key={key}", field="schema_key")
    return workflow


def resolve_workflow(category: Optional[str], purpose: Optional[Union[str, Purpose]]) -> Workflow:
    return get_workflow(resolve_workflow_key(category, purpose))
