"""
Retriever Server

FastAPI surface over the RAG pipeline.

Endpoints:
- POST /query: answer one question
- GET /products: current product catalog snapshot
- GET /health: health check

Pipeline failures are returned as {"ok": false, "stage", "error"} with a
user-facing message: 502 for retrieval/generation failures, 504 for timeouts.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import replace
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from ..common.config import RagConfig, ensure_directories, load_config
from ..common.errors import PipelineError, PipelineTimeoutError
from ..common.presets import PerformanceMode, QueryOptions
from .pipeline import RAGPipeline, build_pipeline

logger = logging.getLogger("catalog_rag.retriever.server")

# Global state
config: Optional[RagConfig] = None
pipeline: Optional[RAGPipeline] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the pipeline on startup"""
    global config, pipeline

    logger.info("Starting up...")
    load_dotenv()
    ensure_directories()

    config = load_config()
    pipeline = build_pipeline(config)
    logger.info(
        "Pipeline ready (llm=%s, collection=%s, catalog=%s)",
        config.llm.provider, config.vector_store.collection, config.catalog.source,
    )

    yield

    logger.info("Shutting down...")
    await pipeline.close()


app = FastAPI(
    title="Catalog RAG",
    description="Question answering over product documents",
    version="0.1.0",
    lifespan=lifespan,
)


# =============================================================================
# Request Models
# =============================================================================

class QueryRequest(BaseModel):
    """Question plus optional per-query options (camelCase aliases accepted)"""
    model_config = ConfigDict(populate_by_name=True)

    query: str = Field(min_length=1)
    performance_mode: Optional[PerformanceMode] = Field(default=None, alias="performanceMode")
    retrieval_count: Optional[int] = Field(default=None, ge=1, alias="retrievalCount")
    similarity_threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0, alias="similarityThreshold")
    product_name: Optional[str] = Field(default=None, alias="productName")
    use_reranking: Optional[bool] = Field(default=None, alias="useReranking")
    use_compression: Optional[bool] = Field(default=None, alias="useCompression")
    use_multi_query: Optional[bool] = Field(default=None, alias="useMultiQuery")
    max_queries: Optional[int] = Field(default=None, ge=1, le=8, alias="maxQueries")
    final_chunk_count: Optional[int] = Field(default=None, ge=1, alias="finalChunkCount")
    format_as_markdown: Optional[bool] = Field(default=None, alias="formatAsMarkdown")
    skip_generation: Optional[bool] = Field(default=None, alias="skipGeneration")

    def to_options(self, defaults: QueryOptions) -> QueryOptions:
        overrides = self.model_dump(exclude={"query", "performance_mode"}, exclude_none=True)
        if self.performance_mode is not None:
            base = QueryOptions.from_preset(self.performance_mode, **overrides)
            return replace(base, timeout_seconds=defaults.timeout_seconds)
        return replace(defaults, **overrides)


# =============================================================================
# Error Handling
# =============================================================================

@app.exception_handler(PipelineError)
async def pipeline_error_handler(request: Request, exc: PipelineError):
    status_code = 504 if isinstance(exc, PipelineTimeoutError) else 502
    return JSONResponse(status_code=status_code, content=exc.to_dict())


def _require_pipeline() -> RAGPipeline:
    if pipeline is None:
        raise HTTPException(status_code=503, detail="Pipeline not initialized")
    return pipeline


# =============================================================================
# Endpoints
# =============================================================================

@app.get("/health")
async def health():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "service": "catalog-rag",
        "initialized": pipeline is not None,
        "catalog_loaded": bool(pipeline and pipeline.resolver and pipeline.resolver.products),
    }


@app.post("/query")
async def query(request: QueryRequest):
    """Answer one question"""
    rag = _require_pipeline()
    options = request.to_options(rag.default_options)
    result = await rag.query(request.query, options)
    return {"ok": True, **result.to_dict()}


@app.get("/products")
async def products():
    """List the products currently known to the resolver"""
    rag = _require_pipeline()
    if rag.resolver is None:
        return {"products": [], "count": 0}
    await rag.resolver.ensure_fresh()
    items = [p.to_dict() for p in rag.resolver.products]
    return {"products": items, "count": len(items)}


# =============================================================================
# CLI Entry Point
# =============================================================================

def run_server():
    """Run the retriever server"""
    import uvicorn

    load_dotenv()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    server_config = load_config().server

    logger.info("Starting server on %s:%d", server_config.host, server_config.port)
    uvicorn.run(
        "catalog_rag.retriever.server:app",
        host=server_config.host,
        port=server_config.port,
        reload=False,
    )


if __name__ == "__main__":
    run_server()
