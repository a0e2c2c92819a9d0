"""
mnemo Context Window Manager -- assembles the model's context under a token budget.

Priority order: latest session summary, then recent turns (newest first,
capped at a fraction of the budget), then retrieved chunks filling what is
left. total_tokens never exceeds token_budget.
"""

import logging
import math
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from mnemo.retriever import ContextChunk, ContextRetriever
from mnemo.summarizer import SessionSummarizer, estimate_tokens

logger = logging.getLogger("mnemo.window")


@dataclass
class WindowOptions:
    token_budget: int = 8000
    recent_turns_fraction: float = 0.4
    compaction_threshold: int = 20

    @classmethod
    def from_env(cls) -> "WindowOptions":
        return cls(
            token_budget=int(os.environ.get("MNEMO_TOKEN_BUDGET", "8000")),
            recent_turns_fraction=float(os.environ.get("MNEMO_RECENT_TURNS_FRACTION", "0.4")),
            compaction_threshold=int(os.environ.get("MNEMO_COMPACTION_THRESHOLD", "20")),
        )


@dataclass
class ContextWindow:
    session_id: str
    chunks: List[ContextChunk] = field(default_factory=list)
    total_tokens: int = 0
    budget_tokens: int = 0
    needs_compaction: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "chunks": [c.to_dict() for c in self.chunks],
            "total_tokens": self.total_tokens,
            "budget_tokens": self.budget_tokens,
            "needs_compaction": self.needs_compaction,
        }


class ContextWindowManager:
    def __init__(
        self,
        retriever: ContextRetriever,
        summarizer: SessionSummarizer,
        options: Optional[WindowOptions] = None,
    ):
        self.retriever = retriever
        self.summarizer = summarizer
        self.options = options or WindowOptions()

    def build_window(
        self,
        session_id: str,
        recent_turns: List[Dict[str, str]],
        current_query: str,
        entity_ids: Optional[Iterable[str]] = None,
    ) -> ContextWindow:
        budget = self.options.token_budget
        recent_turns = list(recent_turns or [])
        chunks: List[ContextChunk] = []
        total = 0

        # 1. summary, admitted only when it fits on its own
        summary_tokens = 0
        latest = self.summarizer.get_latest_summary(session_id)
        if latest:
            tokens = estimate_tokens(latest["summary"])
            if tokens <= budget:
                chunks.append(
                    ContextChunk(
                        id=f"summary-{session_id}",
                        content=latest["summary"],
                        source="summary",
                        score=1.0,
                        token_count=tokens,
                    )
                )
                summary_tokens = tokens
                total += tokens

        # 2. recent turns, newest first; stop at the first that overflows
        turn_cap = min(math.floor(budget * self.options.recent_turns_fraction) + summary_tokens, budget)
        for i in range(len(recent_turns) - 1, -1, -1):
            turn = recent_turns[i]
            text = f"{turn.get('role', '')}: {turn.get('content', '')}"
            tokens = estimate_tokens(text)
            if total + tokens > turn_cap:
                break
            chunks.append(
                ContextChunk(
                    id=f"turn-{i}",
                    content=text,
                    source="recent_turn",
                    score=0.9 + i * 0.001,
                    token_count=tokens,
                )
            )
            total += tokens

        # 3. retrieved chunks fill the remainder; oversized ones are skipped
        for chunk in self.retriever.retrieve(current_query, entity_ids):
            if total + chunk.token_count > budget:
                continue
            chunks.append(chunk)
            total += chunk.token_count

        return ContextWindow(
            session_id=session_id,
            chunks=chunks,
            total_tokens=total,
            budget_tokens=budget,
            needs_compaction=len(recent_turns) >= self.options.compaction_threshold,
        )
