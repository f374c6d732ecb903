"""
Tests for execution/posh_knowledge/tool_models.py

Covers: request model defaults, coercion of numeric keys, validation
        errors, and the published JSON schemas.
"""

import pytest


class TestRequestDefaults:
    """Optional arguments fall back to the documented defaults."""

    def test_act_defaults(self):
        from execution.posh_knowledge.tool_models import SearchActRequest, parse_arguments
        request = parse_arguments(SearchActRequest, {"query": "complaint"})
        assert request.section_number is None
        assert request.max_results == 5

    def test_case_law_and_playbook_default_three(self):
        from execution.posh_knowledge.tool_models import CaseLawRequest, PlaybookRequest, parse_arguments
        assert parse_arguments(CaseLawRequest, {"query": "x"}).max_results == 3
        assert parse_arguments(PlaybookRequest, {"scenario": "x"}).max_results == 3

    def test_semantic_sources_optional(self):
        from execution.posh_knowledge.tool_models import SemanticSearchRequest, parse_arguments
        request = parse_arguments(SemanticSearchRequest, {"query": "x"})
        assert request.sources is None
        assert request.max_results == 5

    def test_none_arguments_treated_as_empty(self):
        from execution.posh_knowledge.tool_models import ComplianceRequest, parse_arguments
        from execution.posh_knowledge.errors import ArgumentValidationError
        with pytest.raises(ArgumentValidationError, match="check_type"):
            parse_arguments(ComplianceRequest, None)


class TestCoercion:

    def test_integer_section_number(self):
        from execution.posh_knowledge.tool_models import SearchActRequest, parse_arguments
        request = parse_arguments(SearchActRequest, {"query": "x", "section_number": 14})
        assert request.section_number == "14"

    def test_integer_case_law_section(self):
        from execution.posh_knowledge.tool_models import CaseLawRequest, parse_arguments
        assert parse_arguments(CaseLawRequest, {"query": "x", "section": 4}).section == "4"

    def test_boolean_not_coerced(self):
        from execution.posh_knowledge.tool_models import SearchRulesRequest, parse_arguments
        from execution.posh_knowledge.errors import ArgumentValidationError
        with pytest.raises(ArgumentValidationError):
            parse_arguments(SearchRulesRequest, {"query": "x", "rule_number": True})


class TestValidationErrors:
    """ArgumentValidationError names the tool and the offending fields."""

    def test_missing_required(self):
        from execution.posh_knowledge.tool_models import PlaybookRequest, parse_arguments
        from execution.posh_knowledge.errors import ArgumentValidationError
        with pytest.raises(ArgumentValidationError) as exc_info:
            parse_arguments(PlaybookRequest, {"category": "intake"})
        assert exc_info.value.tool == "get_playbook_guidance"
        assert [err["loc"] for err in exc_info.value.errors] == [("scenario",)]
        assert "scenario" in str(exc_info.value)

    def test_max_results_lower_bound(self):
        from execution.posh_knowledge.tool_models import SemanticSearchRequest, parse_arguments
        from execution.posh_knowledge.errors import ArgumentValidationError
        with pytest.raises(ArgumentValidationError, match="max_results"):
            parse_arguments(SemanticSearchRequest, {"query": "x", "max_results": 0})

    def test_extra_fields_rejected(self):
        from execution.posh_knowledge.tool_models import SearchActRequest, parse_arguments
        from execution.posh_knowledge.errors import ArgumentValidationError
        with pytest.raises(ArgumentValidationError, match="top_k"):
            parse_arguments(SearchActRequest, {"query": "x", "top_k": 3})

    def test_unknown_source_rejected(self):
        from execution.posh_knowledge.tool_models import SemanticSearchRequest, parse_arguments
        from execution.posh_knowledge.errors import ArgumentValidationError
        with pytest.raises(ArgumentValidationError, match="sources"):
            parse_arguments(SemanticSearchRequest, {"query": "x", "sources": ["act", "statutes"]})

    def test_empty_template_type_rejected(self):
        from execution.posh_knowledge.tool_models import TemplateRequest, parse_arguments
        from execution.posh_knowledge.errors import ArgumentValidationError
        with pytest.raises(ArgumentValidationError, match="template_type"):
            parse_arguments(TemplateRequest, {"template_type": ""})

    def test_non_object_arguments(self):
        from execution.posh_knowledge.tool_models import TemplateRequest, parse_arguments
        from execution.posh_knowledge.errors import ArgumentValidationError
        with pytest.raises(ArgumentValidationError, match="must be an object"):
            parse_arguments(TemplateRequest, "inquiry_report")


class TestInputSchema:

    def test_schema_has_no_title(self):
        from execution.posh_knowledge.tool_models import SearchActRequest, input_schema
        schema = input_schema(SearchActRequest)
        assert "title" not in schema
        assert schema["type"] == "object"
        assert set(schema["properties"]) == {"query", "section_number", "max_results"}

    def test_semantic_sources_enum(self):
        from execution.posh_knowledge.tool_models import SemanticSearchRequest, input_schema
        schema = input_schema(SemanticSearchRequest)
        assert "act" in str(schema["properties"]["sources"])
        assert "templates" not in str(schema["properties"]["sources"])

    def test_extra_properties_forbidden(self):
        from execution.posh_knowledge.tool_models import TemplateRequest, input_schema
        assert input_schema(TemplateRequest)["additionalProperties"] is False
