"""
Catalog RAG

Answers natural-language questions over a catalog of product documents.

Pipeline:
1. Analyze the query (classification, product detection, comparison/catalog intent)
2. Expand it into mode-specific search queries
3. Retrieve evidence from the vector store (standard / catalog / comparison)
4. Rerank and compress the evidence
5. Generate a grounded, cited answer and flag missing context

Usage:
    from catalog_rag.common import load_config
    from catalog_rag.retriever import build_pipeline
"""

__version__ = "0.1.0"
