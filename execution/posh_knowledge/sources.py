"""
Searchable knowledge sources and the SQL used to query them.

Each SourceSpec describes one logical collection: where its rows live,
which column is its structured key, which filters it accepts, and the two
column projections it can return ("detail" for the dedicated tools,
"summary" for cross-source semantic search).

Similarity uses pgvector's cosine distance operator, so
similarity = 1 - (embedding <=> query) is cosine similarity.
"""

from dataclasses import dataclass, field
from typing import Optional

DETAIL = "detail"
SUMMARY = "summary"
VIEWS = (DETAIL, SUMMARY)


def vector_literal(embedding: list[float]) -> str:
    """Format an embedding as a pgvector text literal."""
    return "[" + ",".join(repr(float(v)) for v in embedding) + "]"


@dataclass(frozen=True)
class SourceSpec:
    """A searchable collection in the knowledge base."""
    name: str
    label: str
    from_clause: str
    detail_columns: tuple
    summary_columns: tuple
    key_column: Optional[str] = None
    embedding_column: Optional[str] = None
    # (sql, params) conditions always applied, e.g. document type
    fixed_conditions: tuple = ()
    # filter name -> SQL condition with a single %s placeholder
    filter_conditions: dict = field(default_factory=dict)
    exact_order_by: Optional[str] = None

    @property
    def supports_exact(self) -> bool:
        return self.key_column is not None

    @property
    def supports_semantic(self) -> bool:
        return self.embedding_column is not None

    def columns(self, view: str) -> tuple:
        if view == DETAIL:
            return self.detail_columns
        if view == SUMMARY:
            return self.summary_columns
        raise ValueError(f"Unknown view '{view}' (expected one of {VIEWS})")

    def _conditions(self, filters: Optional[dict]) -> tuple[list[str], list]:
        """Fixed conditions plus caller filters. None-valued filters are skipped."""
        conditions = []
        params = []
        for sql, fixed_params in self.fixed_conditions:
            conditions.append(sql)
            params.extend(fixed_params)

        for name, value in (filters or {}).items():
            if name not in self.filter_conditions:
                raise ValueError(
                    f"Source '{self.name}' does not support filter '{name}'"
                )
            if value is None:
                continue
            conditions.append(self.filter_conditions[name])
            params.append(value)
        return conditions, params

    def exact_sql(
        self,
        key: str,
        filters: Optional[dict],
        limit: int,
        view: str = DETAIL,
    ) -> tuple[str, list]:
        """Build the equality lookup on the structured key."""
        if not self.supports_exact:
            raise ValueError(f"Source '{self.name}' has no structured key")

        conditions, params = self._conditions(filters)
        conditions.append(f"{self.key_column} = %s")
        params.append(key)

        sql = (
            f"SELECT {', '.join(self.columns(view))} "
            f"FROM {self.from_clause} "
            f"WHERE {' AND '.join(conditions)}"
        )
        if self.exact_order_by:
            sql += f" ORDER BY {self.exact_order_by}"
        sql += " LIMIT %s"
        params.append(limit)
        return sql, params

    def nearest_sql(
        self,
        embedding: list[float],
        filters: Optional[dict],
        limit: int,
        view: str = DETAIL,
    ) -> tuple[str, list]:
        """Build the nearest-neighbour query, most similar first."""
        if not self.supports_semantic:
            raise ValueError(f"Source '{self.name}' does not support semantic search")

        literal = vector_literal(embedding)
        conditions, filter_params = self._conditions(filters)
        # Rows without an embedding are never semantic candidates
        conditions.insert(0, f"{self.embedding_column} IS NOT NULL")

        sql = (
            f"SELECT {', '.join(self.columns(view))}, "
            f"1 - ({self.embedding_column} <=> %s::vector) AS similarity "
            f"FROM {self.from_clause} "
            f"WHERE {' AND '.join(conditions)} "
            f"ORDER BY {self.embedding_column} <=> %s::vector "
            f"LIMIT %s"
        )
        # Params in order: score embedding, filters, order embedding, limit
        params = [literal] + filter_params + [literal, limit]
        return sql, params


_LEGAL_FROM = "legal_sections ls JOIN legal_documents ld ON ls.document_id = ld.id"
_LEGAL_DETAIL = ("ls.section_number", "ls.section_title", "ls.section_text", "ld.citation")
_LEGAL_SUMMARY = (
    "ls.section_number AS identifier",
    "ls.section_title AS title",
    "ls.section_text AS content",
    "ld.citation AS reference",
)

SOURCES: dict[str, SourceSpec] = {
    "act": SourceSpec(
        name="act",
        label="PoSH Act, 2013",
        from_clause=_LEGAL_FROM,
        detail_columns=_LEGAL_DETAIL,
        summary_columns=_LEGAL_SUMMARY,
        key_column="ls.section_number",
        embedding_column="ls.embedding",
        fixed_conditions=(("ld.document_type = %s", ("act",)),),
    ),
    "rules": SourceSpec(
        name="rules",
        label="PoSH Rules, 2013",
        from_clause=_LEGAL_FROM,
        detail_columns=_LEGAL_DETAIL,
        summary_columns=_LEGAL_SUMMARY,
        key_column="ls.section_number",
        embedding_column="ls.embedding",
        fixed_conditions=(("ld.document_type = %s", ("rules",)),),
    ),
    "case_law": SourceSpec(
        name="case_law",
        label="Case law",
        from_clause="case_law",
        detail_columns=(
            "case_name", "citation", "court", "decided_date", "facts_summary",
            "issues", "holdings", "ratio_decidendi", "sections_interpreted",
        ),
        summary_columns=(
            "citation AS identifier",
            "case_name AS title",
            "ratio_decidendi AS content",
            "court AS reference",
        ),
        embedding_column="embedding",
        filter_conditions={"section": "%s = ANY(sections_interpreted)"},
    ),
    "playbooks": SourceSpec(
        name="playbooks",
        label="KelpHR Best Practices",
        from_clause="playbooks",
        detail_columns=(
            "title", "category", "scenario", "recommended_approach", "do_list",
            "dont_list", "legal_references", "difficulty_level",
        ),
        summary_columns=(
            "id::text AS identifier",
            "title",
            "recommended_approach AS content",
            "category AS reference",
        ),
        embedding_column="embedding",
        filter_conditions={"category": "category = %s"},
    ),
    "templates": SourceSpec(
        name="templates",
        label="IC document templates",
        from_clause="templates",
        detail_columns=("*",),
        summary_columns=(
            "template_type AS identifier",
            "template_type AS title",
            "content",
            "version::text AS reference",
        ),
        key_column="template_type",
        fixed_conditions=(("is_active = %s", (True,)),),
        exact_order_by="version DESC",
    ),
}

# Searched by semantic_search when the caller names no sources, in this order
DEFAULT_SEMANTIC_SOURCES = ("act", "rules", "case_law", "playbooks")
SEMANTIC_SOURCES = frozenset(name for name, spec in SOURCES.items() if spec.supports_semantic)


def get_source(name: str) -> SourceSpec:
    """Look up a source by name."""
    try:
        return SOURCES[name]
    except KeyError:
        raise ValueError(
            f"Unknown source '{name}' (expected one of {sorted(SOURCES)})"
        ) from None
