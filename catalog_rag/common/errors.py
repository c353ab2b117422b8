"""
Error taxonomy for the query pipeline.

Analysis failures are recovered inside the stage that hit them. Retrieval and
generation failures are surfaced to callers as PipelineError subclasses that
carry a user-facing message; the internal cause stays chained on the
exception and in the logs.
"""


class CatalogRagError(Exception):
    """Base class for all catalog_rag errors."""
    pass


class AnalysisError(CatalogRagError):
    """Completion call for classification or expansion failed or was unparsable."""
    pass


class CatalogError(CatalogRagError):
    """Product catalog could not be fetched from its source."""
    pass


class PipelineError(CatalogRagError):
    """A failure that aborts the whole query."""

    stage = "pipeline"
    user_message = "Something went wrong while answering your question. Please try again."

    def __init__(self, detail: str = ""):
        super().__init__(detail or self.user_message)
        self.detail = detail

    def to_dict(self) -> dict:
        return {"ok": False, "stage": self.stage, "error": self.user_message}


class RetrievalError(PipelineError):
    """Embedding or vector search failed."""

    stage = "retrieval"
    user_message = (
        "Could not search the product documents right now. "
        "Please try again in a moment."
    )


class GenerationError(PipelineError):
    """The final answer could not be generated."""

    stage = "generation"
    user_message = (
        "Found relevant product information but could not generate an answer. "
        "Please try again in a moment."
    )


class PipelineTimeoutError(PipelineError):
    """The caller-level deadline expired before the pipeline finished."""

    stage = "timeout"
    user_message = "The question took too long to answer. Please try again."
