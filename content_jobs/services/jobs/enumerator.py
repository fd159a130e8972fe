"""
Job enumerator.
Expands a course's modules into one generation job per detected subsection.
"""
import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Set, Tuple

from content_jobs.models.jobs import (
    CourseMetadata,
    JobRecord,
    JobStatus,
    ModuleInput,
    ModuleSkeleton,
    SubsectionRef,
)
from content_jobs.services.jobs.store import JobStore, utcnow

logger = logging.getLogger(__name__)

# "#### Title" (exactly four hashes) opens a subsection; an optional closing
# run of hashes is dropped.
_SUBSECTION_HEADING = re.compile(r"^####(?!#)[ \t]+(.+?)(?:[ \t]+#+)?[ \t]*$", re.MULTILINE)
# A subsection runs until the next heading of level 1-4.
_BOUNDARY_HEADING = re.compile(r"^#{1,4}(?!#)[ \t]", re.MULTILINE)

_CONTEXT_LABELS = (
    ("subject", "Subject"),
    ("exam_type", "Exam"),
    ("academic_level", "Academic Level"),
    ("learner_level", "Learner Level"),
)


@dataclass
class EnumerationPlan:
    """Jobs and module skeleton produced for one batch."""

    batch_id: str
    jobs: List[JobRecord]
    modules: List[ModuleSkeleton]
    fallback_modules: List[str] = field(default_factory=list)

    @property
    def total_jobs(self) -> int:
        return len(self.jobs)


def parse_subsections(content: str) -> List[Tuple[str, str]]:
    """
    Split module markdown into (title, excerpt) pairs.

    The excerpt starts at the subsection heading and stops before the next
    heading of level 1-4, so deeper headings stay inside it. Repeated titles
    keep only their first occurrence.

    Args:
        content: Module markdown

    Returns:
        List of (title, excerpt) in document order
    """
    text = (content or "").replace("\r\n", "\n")
    subsections: List[Tuple[str, str]] = []
    seen_titles: Set[str] = set()

    for match in _SUBSECTION_HEADING.finditer(text):
        title = match.group(1).strip()
        if not title or title in seen_titles:
            continue
        seen_titles.add(title)

        boundary = _BOUNDARY_HEADING.search(text, match.end())
        end = boundary.start() if boundary else len(text)
        subsections.append((title, text[match.start():end].strip()))

    return subsections


def slugify(title: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")
    return slug or "subsection"


def _unique(candidate: str, taken: Set[str]) -> str:
    value = candidate
    suffix = 2
    while value in taken:
        value = f"{candidate}-{suffix}"
        suffix += 1
    taken.add(value)
    return value


def _module_identifiers(modules: List[ModuleInput]) -> List[str]:
    taken: Set[str] = set()
    return [
        _unique((module.id or "").strip() or f"module-{index + 1}", taken)
        for index, module in enumerate(modules)
    ]


def build_skeleton(modules: List[ModuleInput]) -> List[ModuleSkeleton]:
    """Module list for a new course document, before any content is merged."""
    skeleton = []
    for index, (module, identifier) in enumerate(zip(modules, _module_identifiers(modules))):
        taken: Set[str] = set()
        skeleton.append(
            ModuleSkeleton(
                id=identifier,
                title=module.title,
                order=module.order if module.order is not None else index + 1,
                content=module.content,
                subsections=[
                    SubsectionRef(key=_unique(slugify(title), taken), title=title)
                    for title, _ in parse_subsections(module.content)
                ],
            )
        )
    return skeleton


def _context_header(module_title: str, context: Dict) -> str:
    lines = [f"Module: {module_title}"]
    for key, label in _CONTEXT_LABELS:
        if context.get(key):
            lines.append(f"{label}: {context[key]}")
    return "\n".join(lines)


class JobEnumerator:
    """Turn modules into pending jobs and persist them as one batch."""

    def __init__(self, store: JobStore):
        self.store = store

    def enumerate(
        self,
        modules: List[ModuleInput],
        course_metadata: Optional[CourseMetadata] = None,
        target_document_id: Optional[str] = None,
        batch_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> EnumerationPlan:
        """
        Build the job list for a batch without touching the store.

        Subsection keys and module identifiers depend only on the module
        content, so enumerating the same modules twice yields the same
        (module_identifier, subsection_title) pairs.

        Args:
            modules: Modules with markdown content
            course_metadata: Course-level generation parameters
            target_document_id: Document the results merge into, if known
            batch_id: Batch id to use (generated when omitted)
            now: Creation timestamp for every job

        Returns:
            EnumerationPlan with jobs, skeleton and zero-subsection modules
        """
        metadata = course_metadata or CourseMetadata()
        batch_id = batch_id or str(uuid.uuid4())
        created_at = now or utcnow()
        base_context = metadata.model_dump(
            exclude={"document_id", "create_document"},
            exclude_none=True,
        )

        skeleton = build_skeleton(modules)
        jobs: List[JobRecord] = []
        fallback_modules: List[str] = []

        for module_index, (module, module_skeleton) in enumerate(zip(modules, skeleton)):
            subsections = parse_subsections(module.content)
            if not subsections:
                logger.warning(
                    f"Module '{module.title}' has no subsection headings; "
                    f"falling back to module-level generation"
                )
                fallback_modules.append(module_skeleton.id)
                continue

            header = _context_header(module.title, base_context)
            for (title, excerpt), ref in zip(subsections, module_skeleton.subsections):
                jobs.append(
                    JobRecord(
                        id=str(uuid.uuid4()),
                        job_batch_id=batch_id,
                        target_document_id=target_document_id,
                        module_identifier=module_skeleton.id,
                        module_index=module_index,
                        module_title=module.title,
                        subsection_key=ref.key,
                        subsection_title=title,
                        content_excerpt=f"{header}\n\n{excerpt}",
                        generation_context={
                            **base_context,
                            "module_title": module.title,
                            "subsection_title": title,
                            "module_index": module_index + 1,
                            "total_modules": len(modules),
                        },
                        status=JobStatus.PENDING,
                        attempt_count=0,
                        position=len(jobs),
                        created_at=created_at,
                    )
                )

        return EnumerationPlan(
            batch_id=batch_id,
            jobs=jobs,
            modules=skeleton,
            fallback_modules=fallback_modules,
        )

    async def submit(
        self,
        modules: List[ModuleInput],
        course_metadata: Optional[CourseMetadata] = None,
        target_document_id: Optional[str] = None,
    ) -> EnumerationPlan:
        """Enumerate and bulk-insert a batch; returns the plan with its batch id."""
        plan = self.enumerate(modules, course_metadata, target_document_id=target_document_id)
        return await self.insert(plan, len(modules))

    async def insert(self, plan: EnumerationPlan, module_count: int) -> EnumerationPlan:
        """Persist an already enumerated plan in one bulk insert."""
        if plan.jobs:
            await self.store.insert_many(plan.jobs)

        logger.info(
            f"Enumerated batch {plan.batch_id}: {plan.total_jobs} jobs across "
            f"{module_count} modules ({len(plan.fallback_modules)} without subsections)"
        )
        return plan
