"""Merge writer: folds one generated subsection into its course document."""
import logging
from typing import Any, Dict

from content_jobs.models.content import SubsectionContent
from content_jobs.models.jobs import JobRecord
from content_jobs.services.jobs.errors import MergeTargetMissingError
from content_jobs.services.jobs.store import DocumentStore, utcnow

logger = logging.getLogger(__name__)


def build_entry(job: JobRecord, content: SubsectionContent) -> Dict[str, Any]:
    """Tag generated content with the job's subsection key so re-merges replace it."""
    return {
        **content.model_dump(mode="json"),
        "title": job.subsection_title,
        "subsection_key": job.subsection_key,
        "job_id": job.id,
        "generated_at": utcnow().isoformat(),
    }


class MergeWriter:
    """Writes results through the document store's scoped upsert only.

    Never reads and rewrites a whole document: two workers finishing sibling
    subsections of the same module would otherwise drop one another's entry.
    """

    def __init__(self, documents: DocumentStore):
        self.documents = documents

    async def merge(self, job: JobRecord, content: SubsectionContent) -> Dict[str, Any]:
        """
        Upsert the subsection into ``modules[*].detailed_subsections``.

        Raises:
            MergeTargetMissingError: No target document, or document/module not found
        """
        if not job.target_document_id:
            raise MergeTargetMissingError(
                f"Job {job.id} has no target document for module '{job.module_title}'"
            )

        entry = build_entry(job, content)
        merged = await self.documents.upsert_module_result(
            document_id=job.target_document_id,
            module_identifier=job.module_identifier,
            module_title=job.module_title,
            entry=entry,
        )
        if not merged:
            raise MergeTargetMissingError(
                f"Module '{job.module_title}' ({job.module_identifier}) not found "
                f"in document {job.target_document_id}"
            )

        logger.info(
            f"Merged subsection '{job.subsection_title}' into module "
            f"'{job.module_title}' of document {job.target_document_id}"
        )
        return entry
