"""
Citation markers.

The answer prompt asks the model to cite context chunks inline; a
CitationParser owns the marker syntax so it can change without touching
prompt assembly or the pipeline.
"""

import re
from typing import List


class CitationParser:
    """Interface for a citation marker syntax"""

    def label(self, chunk_id: str) -> str:
        """Label placed in front of a context chunk"""
        raise NotImplementedError

    def instructions(self) -> str:
        """Prompt text telling the model how to cite"""
        raise NotImplementedError

    def extract(self, text: str) -> List[str]:
        """Cited chunk ids in first-seen order, without duplicates"""
        raise NotImplementedError

    def strip(self, text: str) -> str:
        """Answer text with every citation marker removed"""
        raise NotImplementedError


class UsedChunkCitationParser(CitationParser):
    """``[USED_CHUNK: chunk_0, chunk_2]`` citations (``[CHUNK_ID: ...]`` also accepted)"""

    MARKER_PATTERN = re.compile(r"\[(?:USED_CHUNK|CHUNK_ID):\s*([^\]]+)\]", re.IGNORECASE)

    def label(self, chunk_id: str) -> str:
        return f"[CHUNK_ID: {chunk_id}]"

    def instructions(self) -> str:
        return (
            "CITATION RULES (MANDATORY):\n"
            "- After EACH factual statement from the context, add: [USED_CHUNK: chunk_id]\n"
            "- If information comes from several chunks, cite all: [USED_CHUNK: chunk_0, chunk_1]\n"
            "- Every product detail MUST have a citation\n"
            "- Citations are removed before the answer is shown"
        )

    def extract(self, text: str) -> List[str]:
        ids: List[str] = []
        for match in self.MARKER_PATTERN.finditer(text or ""):
            for chunk_id in match.group(1).split(","):
                chunk_id = chunk_id.strip()
                if chunk_id and chunk_id not in ids:
                    ids.append(chunk_id)
        return ids

    def strip(self, text: str) -> str:
        return self.MARKER_PATTERN.sub("", text or "")
