"""
Tool catalog: every tool the server exposes, with its argument model and
the handler that turns a validated request into a structured result.

A ToolCapability is transport-agnostic; the dispatcher publishes the
catalog and each transport adapter (stdio MCP, HTTP) just forwards
(name, arguments) pairs to it.
"""

import logging
from typing import Awaitable, Callable, Optional
from dataclasses import dataclass

from .retriever import HybridRetriever
from .sources import DEFAULT_SEMANTIC_SOURCES, get_source
from .tool_models import (
    CaseLawRequest,
    ComplianceRequest,
    PlaybookRequest,
    SearchActRequest,
    SearchRulesRequest,
    SemanticSearchRequest,
    TemplateRequest,
    input_schema,
)

logger = logging.getLogger(__name__)

Handler = Callable[[HybridRetriever, object, Optional[float]], Awaitable[dict]]


@dataclass(frozen=True)
class ToolCapability:
    """A named, schema-described operation exposed to the calling agent."""
    name: str
    description: str
    request_model: type
    handler: Handler

    def descriptor(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": input_schema(self.request_model),
        }


# =============================================================================
# Handlers
# =============================================================================

async def _search_legal(
    retriever: HybridRetriever,
    document_type: str,
    query: str,
    number: Optional[str],
    max_results: int,
    timeout: Optional[float],
) -> dict:
    result = await retriever.retrieve(
        document_type,
        query,
        exact_key=number,
        max_results=max_results,
        timeout=timeout,
    )
    return {
        "found": result.found,
        "strategy": result.strategy,
        "source": get_source(document_type).label,
        "sections": result.to_dicts(),
    }


async def search_posh_act(retriever, request: SearchActRequest, timeout=None) -> dict:
    return await _search_legal(
        retriever, "act", request.query, request.section_number, request.max_results, timeout
    )


async def search_posh_rules(retriever, request: SearchRulesRequest, timeout=None) -> dict:
    return await _search_legal(
        retriever, "rules", request.query, request.rule_number, request.max_results, timeout
    )


async def get_case_law(retriever, request: CaseLawRequest, timeout=None) -> dict:
    result = await retriever.retrieve(
        "case_law",
        request.query,
        filters={"section": request.section},
        max_results=request.max_results,
        timeout=timeout,
    )
    return {"found": result.found, "cases": result.to_dicts()}


async def get_playbook_guidance(retriever, request: PlaybookRequest, timeout=None) -> dict:
    result = await retriever.retrieve(
        "playbooks",
        request.scenario,
        filters={"category": request.category},
        max_results=request.max_results,
        timeout=timeout,
    )
    return {
        "found": result.found,
        "guidance": result.to_dicts(),
        "source": get_source("playbooks").label,
    }


async def get_template(retriever, request: TemplateRequest, timeout=None) -> dict:
    # The current template is the highest active version; case_code is only echoed
    result = await retriever.retrieve(
        "templates",
        None,
        exact_key=request.template_type,
        max_results=1,
        timeout=timeout,
    )
    template = result.results[0].fields if result.found else None
    return {"found": result.found, "template": template, "case_code": request.case_code}


async def check_compliance(retriever, request: ComplianceRequest, timeout=None) -> dict:
    # Compliance rules live in the case-management service; this tool only acknowledges the request
    return {
        "check_type": request.check_type,
        "case_code": request.case_code,
        "organization_id": request.organization_id,
        "status": "pending-implementation",
        "note": "Compliance checks require business logic integration.",
    }


async def semantic_search(retriever, request: SemanticSearchRequest, timeout=None) -> dict:
    sources = list(dict.fromkeys(request.sources or DEFAULT_SEMANTIC_SOURCES))
    result = await retriever.retrieve_many(
        request.query,
        sources=sources,
        max_results=request.max_results,
        timeout=timeout,
    )
    results = result.to_dicts(include_source=True)
    return {
        "query": request.query,
        "sources": sources,
        "results": results,
        "total_results": len(results),
    }


# =============================================================================
# Catalog
# =============================================================================

TOOLS: tuple[ToolCapability, ...] = (
    ToolCapability(
        name="search_posh_act",
        description=(
            "Search the PoSH Act 2013 for relevant sections. When section_number "
            "is given and exists, that section is returned exactly; otherwise the "
            "most similar sections are returned."
        ),
        request_model=SearchActRequest,
        handler=search_posh_act,
    ),
    ToolCapability(
        name="search_posh_rules",
        description=(
            "Search the PoSH Rules 2013 for procedural requirements. When rule_number "
            "is given and exists, that rule is returned exactly; otherwise the most "
            "similar rules are returned."
        ),
        request_model=SearchRulesRequest,
        handler=search_posh_rules,
    ),
    ToolCapability(
        name="get_case_law",
        description="Find relevant case law interpreting PoSH provisions.",
        request_model=CaseLawRequest,
        handler=get_case_law,
    ),
    ToolCapability(
        name="get_playbook_guidance",
        description="Get practical guidance from KelpHR playbooks.",
        request_model=PlaybookRequest,
        handler=get_playbook_guidance,
    ),
    ToolCapability(
        name="get_template",
        description="Retrieve the current version of a document template for IC proceedings.",
        request_model=TemplateRequest,
        handler=get_template,
    ),
    ToolCapability(
        name="check_compliance",
        description="Check compliance status for a case or organization.",
        request_model=ComplianceRequest,
        handler=check_compliance,
    ),
    ToolCapability(
        name="semantic_search",
        description=(
            "Semantic search across the knowledge base (Act, Rules, case law, "
            "playbooks), ranked by similarity with source tags."
        ),
        request_model=SemanticSearchRequest,
        handler=semantic_search,
    ),
)
