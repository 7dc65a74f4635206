"""Tests for lesson-plan building and merging."""

from __future__ import annotations

import json

import pytest

from agents.curriculum import (
    SourceDocument,
    build_lesson_from_document,
    merge_lesson_plans,
    process_materials,
)
from errors import InputValidationError, OutputParseError, ProviderError
from models.conversation import Part
from models.group import Group, User
from models.study import LessonModule, LessonPlan
from tests.conftest import OUTLINE_JSON


def plan(course: str, *modules: tuple[str, list[str]]) -> LessonPlan:
    return LessonPlan(course=course, modules=[LessonModule(module=m, lessons=ls) for m, ls in modules])


class TestMergeLessonPlans:
    def test_scenario(self):
        a = plan("X", ("M1", ["L1", "L2"]))
        b = plan("X", ("M1", ["L2", "L3"]), ("M2", ["L4"]))
        assert merge_lesson_plans([a, b]) == plan("X", ("M1", ["L1", "L2", "L3"]), ("M2", ["L4"]))

    def test_identity_on_singleton(self):
        a = plan("X", ("M1", ["L1"]), ("M2", ["L2", "L3"]))
        assert merge_lesson_plans([a]) == a

    def test_idempotent_on_duplicate_input(self):
        a = plan("X", ("M1", ["L1", "L2"]), ("M2", ["L3"]))
        assert merge_lesson_plans([a, a]) == a

    def test_first_course_title_wins(self):
        merged = merge_lesson_plans([plan("First", ("M", ["a"])), plan("Second", ("N", ["b"]))])
        assert merged.course == "First"
        assert [m.module for m in merged.modules] == ["M", "N"]

    def test_inputs_not_mutated(self):
        a = plan("X", ("M1", ["L1"]))
        b = plan("X", ("M1", ["L2"]))
        merge_lesson_plans([a, b])
        assert a.modules[0].lessons == ["L1"]

    def test_empty_input(self):
        with pytest.raises(InputValidationError):
            merge_lesson_plans([])


@pytest.mark.asyncio
async def test_build_lesson_from_document(coordinator, blob_store, provider):
    ref = await blob_store.put(b"%PDF-1.4", content_type="application/pdf")
    result = await build_lesson_from_document(
        coordinator, Part.from_bytes_ref(ref, "application/pdf"), "study_g1", ["ana"]
    )

    assert result == LessonPlan.model_validate_json(OUTLINE_JSON)
    _, sent = provider.calls[-1]
    assert "STRICT JSON" in sent[0].text
    assert sent[1].inline_data.mime_type == "application/pdf"


@pytest.mark.asyncio
async def test_build_lesson_extracts_embedded_json(coordinator, provider):
    provider.responses = [f"Sure! Here it is:\n```json\n{OUTLINE_JSON}\n```"]
    result = await build_lesson_from_document(coordinator, Part.from_text("notes"), "study_g1")
    assert result.course == "Biology"


@pytest.mark.asyncio
async def test_build_lesson_parse_failure(coordinator, provider):
    provider.responses = ["This document is about cells."]
    with pytest.raises(OutputParseError):
        await build_lesson_from_document(coordinator, Part.from_text("notes"), "study_g1")


# ── process_materials ────────────────────────────────────────


@pytest.fixture
async def group(stores):
    await stores.groups.create_user(User(id="u1", name="Ana", email="ana@example.com"))
    existing = plan("Biology", ("Cells", ["Cell structure"]), ("Energy", ["ATP"]))
    group = Group(id="g1", name="Bio", members=["u1"], admin_id="u1", study_session_lesson=existing)
    await stores.groups.save_group(group)
    return group


def pdf(name: str) -> SourceDocument:
    return SourceDocument(filename=name, content_type="application/pdf", data=b"%PDF " + name.encode())


@pytest.mark.asyncio
async def test_process_materials_merges_into_group_lesson(coordinator, stores, blob_store, group):
    result = await process_materials(coordinator, group, [pdf("a.pdf"), pdf("b.pdf")], "u1")

    assert result.failures == []
    assert [f.filename for f in result.files] == ["a.pdf", "b.pdf"]
    assert result.lesson_plan == plan(
        "Biology",
        ("Cells", ["Cell structure", "Mitosis"]),
        ("Energy", ["ATP"]),
    )
    stored = await stores.groups.get_group("g1")
    assert stored.study_session_lesson == result.lesson_plan
    assert len(stored.study_materials) == 2
    assert stored.study_agent_id == "study_g1"
    assert await blob_store.get(result.files[0].file_id) == b"%PDF a.pdf"


@pytest.mark.asyncio
async def test_process_materials_reports_partial_failure(coordinator, stores, provider, group):
    other = json.dumps({"course": "Bio", "modules": [{"module": "Genes", "lessons": ["DNA"]}]})
    provider.responses = ["Hello Ana!", "not json", other]

    result = await process_materials(coordinator, group, [pdf("bad.pdf"), pdf("good.pdf")], "u1")

    assert len(result.failures) == 1
    assert result.failures[0].filename == "bad.pdf"
    assert result.failures[0].stage == "lesson"
    assert [m.module for m in result.lesson_plan.modules] == ["Cells", "Energy", "Genes"]
    assert len(result.files) == 2


@pytest.mark.asyncio
async def test_process_materials_all_failed_raises_first(coordinator, provider, group):
    provider.responses = [RuntimeError("down"), RuntimeError("still down")]
    with pytest.raises(ProviderError) as exc_info:
        await process_materials(coordinator, group, [pdf("a.pdf"), pdf("b.pdf")], "u1")
    assert not isinstance(exc_info.value, OutputParseError)


@pytest.mark.asyncio
async def test_process_materials_requires_files(coordinator, group):
    with pytest.raises(InputValidationError):
        await process_materials(coordinator, group, [], "u1")
