"""
Synthesizer

Assembles the final answer from compressed evidence.

- one completion call per answer, prompt chosen by retrieval mode and output style
- cited chunk ids are extracted and intersected with the chunks actually supplied
- citation markers are stripped from the visible answer
- the generated answer (not the evidence) is scanned for missing-context phrases
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..common.errors import GenerationError
from .citations import CitationParser, UsedChunkCitationParser
from .compressor import CompressedChunk
from .searcher import match_product

logger = logging.getLogger("catalog_rag.retriever.synthesizer")

NO_EVIDENCE_RESPONSE = (
    "I don't have enough information in the uploaded documents to answer this question. "
    "Please try uploading relevant documents first."
)
OTHER_CONTEXT_SECTION = "Other context"
METADATA_SKIP_KEYS = {"content", "text", "filename", "documentId", "document_id", "chunkId", "chunk_id"}
MAX_METADATA_VALUE_CHARS = 200


class ResponseStyle(str, Enum):
    MARKDOWN = "markdown"
    TABLE = "table"
    TEXT = "text"


class AnswerMode(str, Enum):
    STANDARD = "standard"
    COMPARISON = "comparison"
    CATALOG = "catalog"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass
class AssembledResponse:
    """Visible answer plus the context chunk ids it cited"""
    response: str
    used_chunk_ids: List[str] = field(default_factory=list)
    style: ResponseStyle = ResponseStyle.TEXT


@dataclass
class ContextAnalysis:
    """Whether the answer admits missing evidence, and how to route the gap"""
    is_context_missing: bool
    suggested_topics: List[str] = field(default_factory=list)
    category: str = "answered"
    priority: Priority = Priority.LOW

    def to_dict(self) -> Dict[str, Any]:
        return {
            "isContextMissing": self.is_context_missing,
            "suggestedTopics": list(self.suggested_topics),
            "category": self.category,
            "priority": self.priority.value,
        }


MISSING_CONTEXT_PATTERNS = [
    re.compile(p, re.IGNORECASE) for p in (
        r"don'?t have enough information",
        r"not provided in.*context",
        r"information.*not available",
        r"no.*information.*available",
        r"cannot find.*in.*documents",
        r"no relevant information",
        r"context doesn'?t contain",
        r"uploaded documents.*don'?t contain",
        r"not present.*provided context",
        r"insufficient information",
        r"need more details",
        r"cannot answer.*based on.*context",
        r"documents.*don'?t include",
        r"cannot answer.*question",
        r"therefore.*cannot answer",
        r"unable to answer.*question",
        r"context.*does not include",
        r"provided context.*does not",
        r"provided documents.*do not contain",
        r"no information.*about",
        r"not mentioned",
        r"not find any information",
    )
]

# Query vocabulary -> (category, suggested topic) for unanswered questions
CONTEXT_CATEGORIES = [
    ("technical", "technical documentation",
     {"api", "sdk", "code", "function", "integration", "install", "installation", "setup"}),
    ("business", "pricing information",
     {"price", "cost", "plan", "billing", "mrp", "discount", "offer", "warranty"}),
    ("process", "user guides",
     {"how to", "steps", "process", "wash", "clean", "use"}),
]
URGENT_TERMS = {"urgent", "asap", "immediately", "broken", "defective", "refund", "complaint"}


def detect_missing_context(response: str) -> bool:
    return any(p.search(response or "") for p in MISSING_CONTEXT_PATTERNS)


def analyze_context(query: str, response: str) -> ContextAnalysis:
    """Flag answers that admit missing evidence and classify the unanswered query"""
    if not detect_missing_context(response):
        return ContextAnalysis(is_context_missing=False)

    lower = query.lower()
    words = set(re.findall(r"[\w']+", lower))
    category = "other"
    topics: List[str] = []
    for name, topic, terms in CONTEXT_CATEGORIES:
        if any((t in lower) if " " in t else (t in words) for t in terms):
            category = name
            topics.append(topic)
            break

    priority = Priority.HIGH if words & URGENT_TERMS else Priority.MEDIUM
    return ContextAnalysis(
        is_context_missing=True,
        suggested_topics=topics,
        category=category,
        priority=priority,
    )


def detect_response_format(response: str) -> ResponseStyle:
    """Classify an answer as a markdown table, other markdown, or plain text"""
    if not response:
        return ResponseStyle.TEXT

    if re.search(r"^\|[\s\-:]*\|[\s\-:]*\|", response, re.MULTILINE) and re.search(r"^\|.*\|", response, re.MULTILINE):
        return ResponseStyle.TABLE

    markdown_indicators = [
        r"\*\*.+\*\*",
        r"__.+__",
        r"^#{1,6}\s",
        r"^[-*+]\s",
        r"^\d+\.\s",
        r"`{1,3}",
        r"\[.+\]\(.+\)",
    ]
    if any(re.search(p, response, re.MULTILINE) for p in markdown_indicators):
        return ResponseStyle.MARKDOWN

    return ResponseStyle.TEXT


def clean_response(text: str) -> str:
    """Literal \\n to newlines, collapse runs of spaces and blank lines"""
    text = text.replace("\\n", "\n")
    text = re.sub(r" +", " ", text)
    text = re.sub(r" *\n *", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def format_metadata(metadata: Dict[str, Any]) -> str:
    """Scalar metadata as ``key: value`` lines; empty and nested values are skipped"""
    lines = []
    for key, value in (metadata or {}).items():
        if key in METADATA_SKIP_KEYS or value is None or value == "":
            continue
        if isinstance(value, (list, tuple)):
            if not value or not all(isinstance(v, (str, int, float, bool)) for v in value):
                continue
            value = ", ".join(str(v) for v in value)
        elif not isinstance(value, (str, int, float, bool)):
            continue
        lines.append(f"{key}: {str(value)[:MAX_METADATA_VALUE_CHARS]}")
    return "\n".join(lines)


def group_by_product_sections(entries: List[Tuple[CompressedChunk, str]], products: List[str]) -> str:
    """
    One "=== product ===" section per compared product, in the given order.

    A chunk belongs to the product named in its metadata, or failing that in
    its filename. Unmatched chunks close the context under their own header.
    """
    sections: Dict[str, List[str]] = {p: [] for p in products}
    other = []
    for chunk, entry in entries:
        product = match_product(products, chunk.metadata, chunk.filename)
        if product is None:
            other.append(entry)
        else:
            sections[product].append(entry)

    parts = []
    for product in products:
        body = "\n\n---\n\n".join(sections[product]) or "No context was retrieved for this product."
        parts.append(f"=== {product} ===\n{body}")
    if other:
        parts.append(f"=== {OTHER_CONTEXT_SECTION} ===\n" + "\n\n---\n\n".join(other))
    return "\n\n".join(parts)


STYLE_INSTRUCTIONS = {
    ResponseStyle.TABLE: (
        "Respond with a **Markdown table**. Choose columns that fit the question; when comparing, "
        "use the products as columns and the aspects as rows. Add one introductory sentence before "
        "the table and a short summary after it."
    ),
    ResponseStyle.MARKDOWN: (
        "Respond in clean Markdown: meaningful headings, bullet points, and bold product names "
        "where it helps readability. Avoid over-formatting."
    ),
    ResponseStyle.TEXT: (
        "Respond in plain text only, no Markdown symbols. Use simple section titles and '-' bullets."
    ),
}

MODE_INSTRUCTIONS = {
    AnswerMode.STANDARD: """You help sales agents find product information quickly.

RESPONSE RULES:
1. Answer using ONLY the context below; prefer it over general knowledge and never invent details.
2. Give quick, scannable answers: one key differentiator per product, no repetition, no filler.
3. Never mention "chunk", "document", "source" or "context" in the answer.
4. If the context does not answer the question, say you don't have enough information.""",
    AnswerMode.COMPARISON: """You help users compare products: {products}.

RESPONSE RULES:
1. Use ONLY the context below, never external knowledge.
2. Extract every specification for each product: weight, dimensions, price/MRP, materials,
   country of origin, manufacturer, variants.
3. If a specification exists for one product but not the other, say so explicitly.
4. Only say "Not available in provided data" after checking all context for that product.
5. End with a short summary of the key differences.

The context is grouped under one "=== product ===" section per product; chunks that match
no product are listed last under "=== Other context ===".""",
    AnswerMode.CATALOG: """You give an overview of the whole product range.

RESPONSE RULES:
1. Cover ALL distinct products or categories found in the context, not just one.
2. Use ONLY the context below, never external knowledge.
3. Organize products by category or use case with a one-line description each.
4. Include key features and benefits for each product.""",
}

STYLE_ANALYSIS_PROMPT = """Determine the output format the user wants.
- "table": the user asks for a table, comparison matrix, grid, or rows/columns
- "markdown": everything else

Return ONLY one word: table or markdown."""


class ResponseAssembler:
    """
    Builds the answer prompt, calls the completion service and post-processes
    the answer.

    Usage:
        assembler = ResponseAssembler(llm_client)
        assembled = await assembler.assemble(chunks, query, ResponseStyle.MARKDOWN)
    """

    def __init__(self, llm_client, citation_parser: Optional[CitationParser] = None):
        self._llm = llm_client
        self._citations = citation_parser or UsedChunkCitationParser()

    async def analyze_response_style(self, query: str, is_comparison: bool = False) -> ResponseStyle:
        """Table or markdown, decided by one deterministic completion call"""
        fallback = ResponseStyle.TABLE if is_comparison else ResponseStyle.MARKDOWN
        try:
            answer = await self._llm.complete(
                STYLE_ANALYSIS_PROMPT, query, temperature=0.0, max_tokens=10,
            )
        except Exception as e:
            logger.warning("Response style analysis failed, using %s: %s", fallback.value, e)
            return fallback
        return ResponseStyle.TABLE if "table" in str(answer).lower() else ResponseStyle.MARKDOWN

    def chunk_ids(self, chunks: List[CompressedChunk]) -> List[str]:
        """Synthetic ids the prompt uses for each chunk, by position"""
        return [f"chunk_{i}" for i in range(len(chunks))]

    def build_system_prompt(
        self,
        chunks: List[CompressedChunk],
        style: ResponseStyle,
        mode: AnswerMode = AnswerMode.STANDARD,
        products: Optional[List[str]] = None,
    ) -> str:
        entries = [
            (chunk, self._context_entry(chunk_id, chunk))
            for chunk_id, chunk in zip(self.chunk_ids(chunks), chunks)
        ]
        if mode == AnswerMode.COMPARISON and products:
            context = group_by_product_sections(entries, products)
        else:
            context = "\n\n---\n\n".join(entry for _, entry in entries)
        rules = MODE_INSTRUCTIONS[mode].format(products=" vs ".join(products or []))
        return (
            f"{rules}\n\n"
            f"{self._citations.instructions()}\n\n"
            f"FORMAT:\n{STYLE_INSTRUCTIONS[style]}\n\n"
            f"Context:\n{context}"
        )

    def _context_entry(self, chunk_id: str, chunk: CompressedChunk) -> str:
        entry = f"{self._citations.label(chunk_id)} [From: {chunk.filename or 'unknown'}]\n{chunk.compressed_content}"
        metadata = format_metadata(chunk.metadata)
        if metadata:
            entry += f"\n\nMetadata:\n{metadata}"
        return entry

    async def assemble(
        self,
        chunks: List[CompressedChunk],
        query: str,
        style: ResponseStyle = ResponseStyle.TEXT,
        mode: AnswerMode = AnswerMode.STANDARD,
        products: Optional[List[str]] = None,
    ) -> AssembledResponse:
        """
        Generate the cited answer.

        Raises:
            GenerationError: completion failed or returned nothing usable
        """
        system_prompt = self.build_system_prompt(chunks, style, mode, products)
        if mode == AnswerMode.STANDARD:
            temperature, max_tokens = 0.4, 500
        else:
            temperature, max_tokens = 0.1, 1500

        try:
            raw = await self._llm.complete(
                system_prompt, query, temperature=temperature, max_tokens=max_tokens,
            )
        except Exception as e:
            logger.error("Answer generation failed: %s", e, exc_info=True)
            raise GenerationError(f"completion failed: {e}") from e

        raw = raw if isinstance(raw, str) else str(raw or "")
        available = set(self.chunk_ids(chunks))
        used = [cid for cid in self._citations.extract(raw) if cid in available]
        response = clean_response(self._citations.strip(raw))
        if not response:
            raise GenerationError("completion returned an empty answer")

        return AssembledResponse(response=response, used_chunk_ids=used, style=style)
