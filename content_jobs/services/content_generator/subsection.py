"""
Subsection content generator.
Produces multi-page explanatory content for one subsection of a course module.
"""

import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError

from content_jobs.config import settings
from content_jobs.models.content import SUBSECTION_CONTENT_SCHEMA, SubsectionContent
from content_jobs.services.jobs.errors import GenerationError
from content_jobs.services.llm.base import LLMMessage, LLMProvider
from content_jobs.services.llm.factory import LLMFactory

logger = logging.getLogger(__name__)


class SubsectionGenerator:
    """Generation backend for the job queue: ``generate(context, excerpt)``."""

    def __init__(self, llm: Optional[LLMProvider] = None):
        self._llm = llm

    @property
    def llm(self) -> LLMProvider:
        # Resolved on first use so development mode runs without API keys
        if self._llm is None:
            self._llm = LLMFactory.get_provider()
        return self._llm

    async def generate(self, context: Dict[str, Any], content_excerpt: str) -> SubsectionContent:
        """
        Generate detailed content for a subsection.

        Args:
            context: Opaque generation parameters (subject, exam type, module title, ...)
            content_excerpt: The subsection's source markdown with a module header

        Returns:
            Validated SubsectionContent

        Raises:
            GenerationError: Provider failure or a response that does not validate
        """
        subsection_title = context.get("subsection_title") or "Untitled subsection"

        if settings.is_development:
            return self._generate_mock_content(subsection_title, context)

        prompt = self._build_prompt(context, content_excerpt)
        messages = [
            LLMMessage(
                role="system",
                content="You are an expert educator writing detailed, exam-focused study material.",
            ),
            LLMMessage(role="user", content=prompt),
        ]

        try:
            raw = await self.llm.generate_structured(
                messages=messages,
                response_format=SUBSECTION_CONTENT_SCHEMA,
                use_mini=False,
            )
        except GenerationError:
            raise
        except Exception as e:
            raise GenerationError(f"Generation backend failed for '{subsection_title}': {e}") from e

        if not isinstance(raw, dict) or not raw:
            raise GenerationError(f"Empty response for subsection '{subsection_title}'")

        try:
            content = SubsectionContent.model_validate({"title": subsection_title, **raw})
        except ValidationError as e:
            raise GenerationError(
                f"Malformed response for subsection '{subsection_title}': {e.error_count()} validation errors"
            ) from e

        logger.info(f"Generated {len(content.pages)} pages for subsection '{subsection_title}'")
        return content

    def _build_prompt(self, context: Dict[str, Any], content_excerpt: str) -> str:
        subject = context.get("subject") or "General"
        level = (
            context.get("academic_level")
            or context.get("learner_level")
            or "intermediate"
        )
        exam_type = context.get("exam_type")
        audience = f"{exam_type} exam candidates" if exam_type else f"{level} students"

        return f"""Write detailed study content for one subsection of a course.

**Course:** {context.get("title") or "Untitled course"}
**Subject:** {subject}
**Module:** {context.get("module_title", "")}
**Subsection:** {context.get("subsection_title", "")}
**Audience:** {audience} (level: {level})

**Source Material:**

{content_excerpt}

**Instructions:**
1. Split the explanation into 2-4 pages that build from basics to advanced use
2. Page 1: introduction and foundations (200-300 words)
3. Page 2: deep dive into mechanisms, methods and shortcuts (200-300 words)
4. Further pages: applications, worked problems and exam patterns
5. Give each page a clear title and a one-sentence key takeaway
6. Put formulas and worked calculations in mathematical_content with an explanation and example
7. List key points, one practical example and common pitfalls for the whole subsection
8. Use markdown inside page content; use LaTeX for mathematics

Return JSON matching the requested schema."""

    def _generate_mock_content(self, subsection_title: str, context: Dict[str, Any]) -> SubsectionContent:
        """Generate mock content for development mode."""
        module_title = context.get("module_title", "this module")
        return SubsectionContent.model_validate(
            {
                "title": subsection_title,
                "summary": f"Core ideas of {subsection_title} within {module_title}.",
                "key_points": [
                    f"Definition of {subsection_title}",
                    "Standard method",
                    "Typical exam question pattern",
                ],
                "pages": [
                    {
                        "page_number": 1,
                        "page_title": "Introduction & Foundation",
                        "content": f"## {subsection_title}\n\nThis page introduces {subsection_title} and the background needed for it.",
                        "key_takeaway": f"Know what {subsection_title} means.",
                        "mathematical_content": [],
                    },
                    {
                        "page_number": 2,
                        "page_title": "Methods & Shortcuts",
                        "content": f"Step-by-step methods for solving {subsection_title} problems quickly.",
                        "key_takeaway": "Apply the standard method before reaching for shortcuts.",
                        "mathematical_content": [
                            {
                                "type": "formula",
                                "title": "Basic relation",
                                "content": "$y = mx + b$",
                                "explanation": "Linear relation used throughout the worked examples.",
                                "example": "For m = 2, b = 1 and x = 3, y = 7.",
                            }
                        ],
                    },
                ],
                "practical_example": f"A worked {subsection_title} problem from a past paper.",
                "common_pitfalls": ["Skipping units", "Misreading the question"],
                "difficulty": context.get("learner_level") or "intermediate",
                "estimated_time": "20-30 minutes",
            }
        )
