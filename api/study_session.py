"""Study session endpoints: curriculum, topic chat, initialization, quizzes.

Each topic of a group has its own chat and study agent
(``study_<groupId>_<topic>``); the group's curriculum agent
(``study_<groupId>``) outlines uploaded material.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, File, HTTPException, Query, UploadFile

from agents.curriculum import SourceDocument, process_materials
from agents.quiz_engine import complete_quiz, share_results_with_group_agent, summarize_skills
from agents.session_coordinator import get_session_coordinator
from api.deps import current_user, member_group
from config.prompts.assistant import build_study_context
from config.settings import get_settings
from errors import NotFoundError
from models.conversation import study_agent_id
from models.events import NEW_STUDY_CHAT_MESSAGES, StudyMessagePayload
from models.group import User
from models.request import (
    GroupLessonResponse,
    InitializeSessionRequest,
    InitializeSessionResponse,
    ProcessMaterialsResponse,
    QuizSubmitRequest,
    QuizSubmitResponse,
    SkillsSummaryResponse,
    StudyChatHistoryResponse,
    StudyChatRequest,
    StudyChatResponse,
)
from models.study import StudyMessage
from services.realtime import get_realtime_hub, study_room

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/study-session", tags=["study-session"])


async def _payloads(messages: list[StudyMessage]) -> list[StudyMessagePayload]:
    users = await get_session_coordinator().groups.get_users(
        [m.sender_id for m in messages if m.sender_id]
    )
    return [StudyMessagePayload.of(m, users) for m in messages]


# ── Curriculum ───────────────────────────────────────────────


@router.post("/{group_id}/process", response_model=ProcessMaterialsResponse)
async def process_study_materials(
    group_id: str,
    files: list[UploadFile] = File(...),
    user: User = Depends(current_user),
):
    """Store uploaded documents and merge their outlines into the group lesson."""
    group = await member_group(group_id, user)
    limit = get_settings().max_upload_bytes

    documents: list[SourceDocument] = []
    for upload in files:
        data = await upload.read()
        if len(data) > limit:
            raise HTTPException(
                status_code=413,
                detail=f"{upload.filename} exceeds the {limit} byte upload limit",
            )
        documents.append(SourceDocument(
            filename=upload.filename or "document",
            content_type=upload.content_type or "application/octet-stream",
            data=data,
        ))

    logger.info("Processing %d upload(s) for group %s", len(documents), group_id)
    return await process_materials(get_session_coordinator(), group, documents, user.id)


@router.get("/{group_id}/lesson", response_model=GroupLessonResponse)
async def get_lesson(group_id: str, user: User = Depends(current_user)):
    group = await member_group(group_id, user)
    return GroupLessonResponse(
        lesson_plan=group.study_session_lesson,
        materials=group.study_materials,
    )


# ── Topic chat ───────────────────────────────────────────────


@router.get("/chat/history", response_model=StudyChatHistoryResponse)
async def get_chat_history(
    group_id: str = Query(..., alias="groupId"),
    topic: str = Query(..., min_length=1),
    user: User = Depends(current_user),
):
    await member_group(group_id, user)
    chat = await get_session_coordinator().study_chats.get(group_id, topic)
    if chat is None:
        return StudyChatHistoryResponse(group_id=group_id, topic=topic, messages=[])
    return StudyChatHistoryResponse(
        group_id=group_id,
        topic=topic,
        messages=await _payloads(chat.messages),
        quiz=chat.quiz,
    )


@router.post("/chat", response_model=StudyChatResponse)
async def send_chat_message(req: StudyChatRequest, user: User = Depends(current_user)):
    """Append a member message and, by default, the topic assistant's reply.

    Nothing is persisted when the assistant call fails.
    """
    coordinator = get_session_coordinator()
    group = await member_group(req.group_id, user)

    appended = [StudyMessage.from_user(user.id, req.message)]
    reply = None
    if req.ask_assistant:
        participants = await coordinator.groups.member_names(group)
        reply = await coordinator.submit_turn(
            study_agent_id(group.id, req.topic), participants, user.name, req.message
        )
        appended.append(StudyMessage.from_assistant(reply))

    # Read after the provider call so concurrent messages are kept.
    chat = await coordinator.study_chats.get_or_new(group.id, req.topic)
    if not chat.ai_context:
        chat.ai_context = build_study_context(req.topic, await coordinator.groups.member_names(group))
    chat.messages.extend(appended)
    await coordinator.study_chats.save(chat)

    payloads = await _payloads(appended)
    await get_realtime_hub().emit_to_room(
        study_room(group.id, req.topic), NEW_STUDY_CHAT_MESSAGES, payloads
    )
    return StudyChatResponse(message=reply, messages=payloads)


# ── Initialization & quizzes ─────────────────────────────────


@router.post("/initialize", response_model=InitializeSessionResponse)
async def initialize_session(req: InitializeSessionRequest, user: User = Depends(current_user)):
    """Generate the topic's lesson and quiz once; repeated calls return them.

    Answers 409 while another request is still initializing the topic.
    """
    coordinator = get_session_coordinator()
    group = await member_group(req.group_id, user)
    names = await coordinator.groups.member_names(group)

    result = await coordinator.initialize_study_session(group.id, req.topic, names)
    payloads = await _payloads(result.chat.messages)
    if not result.already_initialized:
        await get_realtime_hub().emit_to_room(
            study_room(group.id, req.topic), NEW_STUDY_CHAT_MESSAGES, payloads
        )
    return InitializeSessionResponse(
        initialized=True,
        already_initialized=result.already_initialized,
        messages=payloads,
        quiz=result.chat.quiz,
    )


@router.post("/quiz/submit", response_model=QuizSubmitResponse)
async def submit_quiz(
    req: QuizSubmitRequest,
    background_tasks: BackgroundTasks,
    user: User = Depends(current_user),
):
    """Score a submission, replacing the caller's previous one."""
    coordinator = get_session_coordinator()
    group = await member_group(req.group_id, user)
    chat = await coordinator.study_chats.get(group.id, req.topic)
    if chat is None:
        raise NotFoundError("study session", f"{group.id}/{req.topic}")

    response = await complete_quiz(
        chat, user, req.answers, study_chats=coordinator.study_chats, hub=get_realtime_hub()
    )
    names = await coordinator.groups.member_names(group)
    background_tasks.add_task(
        share_results_with_group_agent, coordinator, chat, user.name, response, names
    )
    return QuizSubmitResponse(
        score=response.score,
        correct_count=response.correct_count,
        total_questions=len(chat.quiz.questions),
    )


@router.get("/{group_id}/skills", response_model=SkillsSummaryResponse)
async def get_skills(group_id: str, user: User = Depends(current_user)):
    """Current quiz scores of every topic in the group."""
    coordinator = get_session_coordinator()
    await member_group(group_id, user)
    chats = await coordinator.study_chats.list_for_group(group_id)
    user_ids = [r.user_id for c in chats if c.quiz for r in c.quiz.responses]
    users = await coordinator.groups.get_users(user_ids)
    return SkillsSummaryResponse(group_id=group_id, topics=summarize_skills(chats, users))
