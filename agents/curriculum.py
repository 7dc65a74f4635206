"""Curriculum builder: course outlines from uploaded study material.

Each document is sent to the group's curriculum agent with a strict-JSON
outline request; the per-document outlines are merged into the group's
``studySessionLesson``:

- modules with the same title are unioned on lessons (exact-string dedupe),
- new module titles are appended,
- order is first-seen, for modules and for lessons within a module.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Sequence

from pydantic import BaseModel

from config.prompts.assistant import CURRICULUM_PROMPT
from errors import InputValidationError, NexusError
from models.conversation import Part, study_agent_id
from models.group import Group, StudyMaterial
from models.request import ProcessMaterialsResponse, UploadFailure
from models.study import LessonPlan
from services.json_output import parse_model_output

if TYPE_CHECKING:
    from agents.session_coordinator import SessionCoordinator

logger = logging.getLogger(__name__)


class SourceDocument(BaseModel):
    """An uploaded file awaiting storage and analysis."""

    filename: str
    content_type: str = "application/octet-stream"
    data: bytes


async def build_lesson_from_document(
    coordinator: SessionCoordinator,
    document: Part,
    agent_id: str,
    participants: Sequence[str] | None = None,
) -> LessonPlan:
    """Outline one document as ``{course, modules: [{module, lessons}]}``.

    Raises:
        OutputParseError: The answer is not a valid outline.
        ProviderError: The provider call failed.
    """
    text = await coordinator.submit_turn(
        agent_id, participants, None, CURRICULUM_PROMPT, [Part.from_text(CURRICULUM_PROMPT), document]
    )
    return parse_model_output(text, LessonPlan)


def merge_lesson_plans(plans: Sequence[LessonPlan]) -> LessonPlan:
    """Merge outlines, using the first as the accumulator.

    Inputs are not modified.

    Raises:
        InputValidationError: *plans* is empty.
    """
    if not plans:
        raise InputValidationError("At least one lesson plan is required to merge")

    merged = plans[0].model_copy(deep=True)
    by_title = {module.module: module for module in merged.modules}
    for plan in plans[1:]:
        for module in plan.modules:
            existing = by_title.get(module.module)
            if existing is None:
                added = module.model_copy(deep=True)
                merged.modules.append(added)
                by_title[added.module] = added
                continue
            for lesson in module.lessons:
                if lesson not in existing.lessons:
                    existing.lessons.append(lesson)
    return merged


async def process_materials(
    coordinator: SessionCoordinator,
    group: Group,
    documents: Sequence[SourceDocument],
    uploaded_by: str,
) -> ProcessMaterialsResponse:
    """Store a batch of documents and fold their outlines into the group lesson.

    Each document is stored, then outlined.  Per-document failures are
    reported in ``failures`` with the stage that failed; if every document
    fails, the first failure is raised instead.
    """
    if not documents:
        raise InputValidationError("No files uploaded")

    agent_id = group.study_agent_id or study_agent_id(group.id)
    participants = await coordinator.groups.member_names(group)

    stored: list[StudyMaterial] = []
    plans: list[LessonPlan] = []
    failures: list[UploadFailure] = []
    first_error: NexusError | None = None

    for doc in documents:
        try:
            ref = await coordinator.blobs.put(
                doc.data,
                content_type=doc.content_type,
                filename=doc.filename,
                metadata={"groupId": group.id, "uploadedBy": uploaded_by},
            )
        except NexusError as exc:
            logger.warning("Storing %s for group %s failed: %s", doc.filename, group.id, exc)
            failures.append(UploadFailure(filename=doc.filename, stage="store", error=exc.message))
            first_error = first_error or exc
            continue

        stored.append(StudyMaterial(
            file_id=ref,
            filename=doc.filename,
            content_type=doc.content_type,
            uploaded_by=uploaded_by,
        ))
        try:
            plan = await build_lesson_from_document(
                coordinator, Part.from_bytes_ref(ref, doc.content_type), agent_id, participants
            )
        except NexusError as exc:
            logger.warning("Outlining %s for group %s failed: %s", doc.filename, group.id, exc)
            failures.append(UploadFailure(filename=doc.filename, stage="lesson", error=exc.message))
            first_error = first_error or exc
            continue
        plans.append(plan)

    if not plans and first_error is not None and len(failures) == len(documents):
        raise first_error

    # Re-read so concurrent member or material changes are not overwritten.
    current = await coordinator.groups.require_group(group.id)
    current.study_agent_id = agent_id
    current.study_materials.extend(stored)
    if plans:
        base = [current.study_session_lesson] if current.study_session_lesson else []
        current.study_session_lesson = merge_lesson_plans([*base, *plans])
    await coordinator.groups.save_group(current)

    logger.info(
        "Processed %d document(s) for group %s: %d outlined, %d failure(s)",
        len(documents), group.id, len(plans), len(failures),
    )
    return ProcessMaterialsResponse(
        lesson_plan=current.study_session_lesson,
        files=stored,
        failures=failures,
    )
