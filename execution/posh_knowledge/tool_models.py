"""
Pydantic request models for the knowledge tools.

One model per tool; together they form the ToolRequest union. Arguments
are validated into these models before any retrieval happens, so missing
required fields, wrong types, out-of-range limits and unexpected fields
are rejected up front.
"""

from typing import Any, ClassVar, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ArgumentValidationError

SemanticSource = Literal["act", "rules", "case_law", "playbooks"]


class _ToolRequest(BaseModel):
    """Shared configuration for tool argument models."""
    model_config = ConfigDict(extra="forbid")

    tool_name: ClassVar[str] = ""

    @field_validator(
        "section_number", "rule_number", "section", "case_code", "organization_id",
        mode="before", check_fields=False,
    )
    @classmethod
    def _numbers_as_keys(cls, value: Any) -> Any:
        # Agents often send section numbers as JSON numbers
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


class SearchActRequest(_ToolRequest):
    """Arguments for search_posh_act."""
    tool_name: ClassVar[str] = "search_posh_act"

    query: str = Field(..., description="What to look for in the Act")
    section_number: Optional[str] = Field(
        None, description="Exact section number, e.g. '4'. Returned verbatim when it exists."
    )
    max_results: int = Field(5, ge=1, description="Maximum sections to return")


class SearchRulesRequest(_ToolRequest):
    """Arguments for search_posh_rules."""
    tool_name: ClassVar[str] = "search_posh_rules"

    query: str = Field(..., description="What to look for in the Rules")
    rule_number: Optional[str] = Field(
        None, description="Exact rule number, e.g. '7'. Returned verbatim when it exists."
    )
    max_results: int = Field(5, ge=1, description="Maximum rules to return")


class CaseLawRequest(_ToolRequest):
    """Arguments for get_case_law."""
    tool_name: ClassVar[str] = "get_case_law"

    query: str = Field(..., description="Legal issue or fact pattern")
    section: Optional[str] = Field(
        None, description="Only cases that interpret this section of the Act"
    )
    max_results: int = Field(3, ge=1, description="Maximum cases to return")


class PlaybookRequest(_ToolRequest):
    """Arguments for get_playbook_guidance."""
    tool_name: ClassVar[str] = "get_playbook_guidance"

    scenario: str = Field(..., description="Situation the Internal Committee is facing")
    category: Optional[str] = Field(None, description="Restrict to one playbook category")
    max_results: int = Field(3, ge=1, description="Maximum playbooks to return")


class TemplateRequest(_ToolRequest):
    """Arguments for get_template."""
    tool_name: ClassVar[str] = "get_template"

    template_type: str = Field(..., min_length=1, description="Template type, e.g. 'inquiry_report'")
    case_code: Optional[str] = Field(None, description="Case the template is for (echoed back)")


class ComplianceRequest(_ToolRequest):
    """Arguments for check_compliance."""
    tool_name: ClassVar[str] = "check_compliance"

    check_type: str = Field(..., min_length=1, description="Kind of compliance check")
    case_code: Optional[str] = Field(None, description="Case to check")
    organization_id: Optional[str] = Field(None, description="Organization to check")


class SemanticSearchRequest(_ToolRequest):
    """Arguments for semantic_search."""
    tool_name: ClassVar[str] = "semantic_search"

    query: str = Field(..., description="Free-text query")
    sources: Optional[list[SemanticSource]] = Field(
        None, description="Sources to search; all of them when omitted or empty"
    )
    max_results: int = Field(5, ge=1, description="Maximum results across all sources")


ToolRequest = Union[
    SearchActRequest,
    SearchRulesRequest,
    CaseLawRequest,
    PlaybookRequest,
    TemplateRequest,
    ComplianceRequest,
    SemanticSearchRequest,
]


def parse_arguments(model: type[_ToolRequest], arguments: Any) -> _ToolRequest:
    """
    Validate raw tool arguments into a request model.

    Raises:
        ArgumentValidationError: if the arguments do not match the model
    """
    if arguments is None:
        arguments = {}
    if not isinstance(arguments, dict):
        raise ArgumentValidationError(
            model.tool_name,
            [{"loc": (), "msg": f"arguments must be an object, got {type(arguments).__name__}"}],
        )
    try:
        return model.model_validate(arguments)
    except ValidationError as e:
        raise ArgumentValidationError(
            model.tool_name, e.errors(include_url=False, include_context=False)
        ) from e


def input_schema(model: type[_ToolRequest]) -> dict:
    """JSON schema published for a tool's arguments."""
    schema = model.model_json_schema()
    schema.pop("title", None)
    schema.pop("description", None)
    return schema
