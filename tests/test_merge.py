"""Tests for merging generated subsections into course documents."""
import asyncio

import pytest

from content_jobs.models.content import SubsectionContent
from content_jobs.services.jobs.enumerator import JobEnumerator, build_skeleton
from content_jobs.services.jobs.errors import MergeTargetMissingError
from content_jobs.services.jobs.merge import MergeWriter, build_entry


def _content(title, body="body"):
    return SubsectionContent(
        title=title,
        pages=[{"page_number": 1, "page_title": title, "content": body}],
    )


async def _document_and_jobs(memory_stores, module):
    jobs_store, documents = memory_stores
    document_id = await documents.create_document(
        {"title": "Arithmetic", "modules": [m.model_dump() for m in build_skeleton([module])]}
    )
    plan = JobEnumerator(jobs_store).enumerate([module], target_document_id=document_id)
    return document_id, plan.jobs


async def _entries(documents, document_id):
    document = await documents.get_document(document_id)
    return document["modules"][0]["detailed_subsections"]


def test_entry_carries_key_and_generated_content(memory_stores, fractions_module):
    plan = JobEnumerator(memory_stores[0]).enumerate([fractions_module])

    entry = build_entry(plan.jobs[1], _content("Operations"))

    assert entry["subsection_key"] == "operations"
    assert entry["title"] == "Operations"
    assert entry["job_id"] == plan.jobs[1].id
    assert entry["pages"][0]["page_title"] == "Operations"
    assert "generated_at" in entry


@pytest.mark.asyncio
async def test_first_merge_creates_array(memory_stores, fractions_module):
    _, documents = memory_stores
    document_id, jobs = await _document_and_jobs(memory_stores, fractions_module)
    skeleton_doc = await documents.get_document(document_id)
    assert "detailed_subsections" not in skeleton_doc["modules"][0]

    await MergeWriter(documents).merge(jobs[0], _content("Intro"))

    assert [e["subsection_key"] for e in await _entries(documents, document_id)] == ["intro"]


@pytest.mark.asyncio
async def test_remerge_replaces_instead_of_duplicating(memory_stores, fractions_module):
    _, documents = memory_stores
    document_id, jobs = await _document_and_jobs(memory_stores, fractions_module)
    writer = MergeWriter(documents)

    await writer.merge(jobs[0], _content("Intro", "first attempt"))
    await writer.merge(jobs[0], _content("Intro", "second attempt"))

    entries = await _entries(documents, document_id)
    assert len(entries) == 1
    assert entries[0]["pages"][0]["content"] == "second attempt"


@pytest.mark.asyncio
async def test_concurrent_sibling_merges_all_land(memory_stores, fractions_module):
    _, documents = memory_stores
    document_id, jobs = await _document_and_jobs(memory_stores, fractions_module)
    writer = MergeWriter(documents)

    await asyncio.gather(*[writer.merge(job, _content(job.subsection_title)) for job in jobs])

    keys = {e["subsection_key"] for e in await _entries(documents, document_id)}
    assert keys == {"intro", "operations", "word-problems"}


@pytest.mark.asyncio
async def test_merge_order_does_not_change_the_key_set(memory_stores, fractions_module):
    _, documents = memory_stores
    writer = MergeWriter(documents)

    forward_id, jobs = await _document_and_jobs(memory_stores, fractions_module)
    for job in jobs:
        await writer.merge(job, _content(job.subsection_title))

    backward_id, jobs = await _document_and_jobs(memory_stores, fractions_module)
    for job in reversed(jobs):
        await writer.merge(job, _content(job.subsection_title))

    forward = {e["subsection_key"]: e["title"] for e in await _entries(documents, forward_id)}
    backward = {e["subsection_key"]: e["title"] for e in await _entries(documents, backward_id)}
    assert forward == backward


@pytest.mark.asyncio
async def test_module_matched_by_title_when_id_differs(memory_stores, fractions_module):
    _, documents = memory_stores
    document_id = await documents.create_document(
        {"modules": [{"id": "legacy-7", "title": "Fractions"}]}
    )
    job = JobEnumerator(memory_stores[0]).enumerate([fractions_module], target_document_id=document_id).jobs[0]

    await MergeWriter(documents).merge(job, _content("Intro"))

    document = await documents.get_document(document_id)
    assert document["modules"][0]["detailed_subsections"][0]["subsection_key"] == "intro"


@pytest.mark.asyncio
async def test_missing_document_or_module_raises(memory_stores, fractions_module):
    _, documents = memory_stores
    writer = MergeWriter(documents)
    job = JobEnumerator(memory_stores[0]).enumerate([fractions_module], target_document_id="nope").jobs[0]

    with pytest.raises(MergeTargetMissingError):
        await writer.merge(job, _content("Intro"))

    job.target_document_id = await documents.create_document({"modules": [{"id": "x", "title": "Other"}]})
    with pytest.raises(MergeTargetMissingError):
        await writer.merge(job, _content("Intro"))
