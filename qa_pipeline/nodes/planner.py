"""
Planner Node (LLM-based)

Breaks the supplied materials into an execution plan: a list of plan items,
each describing one slice of coverage for the writer to draft. The plan is
the backbone of the run, so any planner failure is fatal.
"""

from __future__ import annotations
from typing import List
import logging

from ..config import PipelineContext
from ..exceptions import PlannerFailure
from ..models import PlanItem, PlanResponse
from ..validation import StructuredInvoker
from .parser import ParsedRequest

logger = logging.getLogger(__name__)

PLANNER_RETRY_INSTRUCTION = """IMPORTANT: The previous response did not match the plan schema.
Return ONLY a JSON object with an "items" array. Every item needs a non-empty "id", "title" and "area";
"focus", "estimatedCases" (positive integer) and "chunkRefs" (array of strings) are optional.
No markdown, no commentary."""

PRIORITY_GUIDANCE = {
    "comprehensive": "Aim for broad coverage: include edge cases, negative paths and cross-cutting concerns.",
    "core-functionality": "Narrow the plan to critical paths and core business workflows.",
}


class Planner:
    """
    Node 2: Produce the generation plan using the planner model.

    One structured invocation per run. Items without an id get
    ``PLAN-<position>`` (1-based).
    """

    def __init__(self, invoker: StructuredInvoker, context: PipelineContext):
        self.invoker = invoker
        self.context = context

    async def plan(self, parsed: ParsedRequest) -> List[PlanItem]:
        """
        Generate the plan for a parsed request.

        Args:
            parsed: Shared prompt material

        Returns:
            Plan items in model order, each with an id

        Raises:
            PlannerFailure: wraps any invocation or validation failure
        """
        prompt = self.build_prompt(parsed)

        try:
            response = await self.invoker.invoke(
                self.context.planner,
                PlanResponse,
                prompt,
                PLANNER_RETRY_INSTRUCTION,
                stage="planner",
            )
        except Exception as e:
            logger.error(f"Planner invocation failed: {e}")
            raise PlannerFailure(e) from e

        items = self._assign_ids(response.items)
        logger.info(f"Planner produced {len(items)} plan items")
        return items

    def build_prompt(self, parsed: ParsedRequest) -> str:
        """Build the planner prompt from the shared request material."""
        priority = parsed.priority_mode
        sections = [
            "You are an expert QA strategist. Break the supplied materials into a concise "
            "execution plan for generating test cases.",
            f"Priority mode: {priority}. {PRIORITY_GUIDANCE.get(priority, '')}".rstrip()
            + " Produce a JSON array of plan items with id, title, area, focus, estimatedCases,"
            " and chunkRefs when applicable.",
            f"Requirements:\n{parsed.requirements}" if parsed.requirements else "No requirements provided.",
            f"Reference documents:\n{parsed.files_summary}" if parsed.files_summary else "",
            parsed.scenario_summary,
        ]
        return "\n\n".join(section for section in sections if section)

    @staticmethod
    def _assign_ids(items: List[PlanItem]) -> List[PlanItem]:
        return [
            item if item.id else item.model_copy(update={"id": f"PLAN-{position}"})
            for position, item in enumerate(items, 1)
        ]
