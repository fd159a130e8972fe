"""Pydantic models for generated subsection content."""
from typing import List

from pydantic import BaseModel, Field


class MathematicalContent(BaseModel):
    """A formula, worked calculation or example attached to a page."""

    type: str = "formula"
    title: str = ""
    content: str = ""
    explanation: str = ""
    example: str = ""


class SubsectionPage(BaseModel):
    """One page of a multi-page subsection explanation."""

    page_number: int
    page_title: str
    content: str
    key_takeaway: str = ""
    mathematical_content: List[MathematicalContent] = Field(default_factory=list)


class SubsectionContent(BaseModel):
    """Detailed content generated for a single subsection."""

    title: str
    summary: str = ""
    key_points: List[str] = Field(default_factory=list)
    pages: List[SubsectionPage] = Field(min_length=1)
    practical_example: str = ""
    common_pitfalls: List[str] = Field(default_factory=list)
    difficulty: str = ""
    estimated_time: str = ""


SUBSECTION_CONTENT_SCHEMA = {
    "type": "json_schema",
    "json_schema": {
        "name": "subsection_content",
        "strict": True,
        "schema": {
            "type": "object",
            "properties": {
                "title": {"type": "string"},
                "summary": {"type": "string"},
                "key_points": {"type": "array", "items": {"type": "string"}},
                "pages": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "page_number": {"type": "integer"},
                            "page_title": {"type": "string"},
                            "content": {"type": "string"},
                            "key_takeaway": {"type": "string"},
                            "mathematical_content": {
                                "type": "array",
                                "items": {
                                    "type": "object",
                                    "properties": {
                                        "type": {"type": "string"},
                                        "title": {"type": "string"},
                                        "content": {"type": "string"},
                                        "explanation": {"type": "string"},
                                        "example": {"type": "string"},
                                    },
                                    "required": ["type", "title", "content", "explanation", "example"],
                                    "additionalProperties": False,
                                },
                            },
                        },
                        "required": [
                            "page_number",
                            "page_title",
                            "content",
                            "key_takeaway",
                            "mathematical_content",
                        ],
                        "additionalProperties": False,
                    },
                },
                "practical_example": {"type": "string"},
                "common_pitfalls": {"type": "array", "items": {"type": "string"}},
                "difficulty": {"type": "string"},
                "estimated_time": {"type": "string"},
            },
            "required": [
                "title",
                "summary",
                "key_points",
                "pages",
                "practical_example",
                "common_pitfalls",
                "difficulty",
                "estimated_time",
            ],
            "additionalProperties": False,
        },
    },
}
