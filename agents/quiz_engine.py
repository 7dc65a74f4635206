"""Quiz engine: generate topic quizzes, score submissions, summarize skills.

Generation goes through the topic agent, so the quiz is written with the
lesson already in the conversation.  Scoring is pure; persistence and the
``quizCompleted`` event happen in :func:`complete_quiz` (emit after save).
"""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING, Sequence

from config.prompts.assistant import build_quiz_prompt, build_quiz_results_prompt
from errors import NexusError, NotFoundError
from models.conversation import Part, group_agent_id
from models.events import QUIZ_COMPLETED, QuizCompletedEvent
from models.group import UserSummary
from models.request import SkillScore
from models.study import Quiz, QuizResponse, StudySessionChat
from services.json_output import parse_model_output
from services.realtime import RealtimeHub, group_room
from services.study_chat_store import StudyChatStore

if TYPE_CHECKING:
    from agents.session_coordinator import SessionCoordinator
    from models.group import User

logger = logging.getLogger(__name__)

QUIZ_QUESTION_COUNT = 5
SYSTEM_SENDER = "system"


async def generate_quiz(
    coordinator: SessionCoordinator,
    agent_id: str,
    topic: str,
    participants: Sequence[str] | None = None,
    count: int = QUIZ_QUESTION_COUNT,
) -> Quiz:
    """Ask the topic agent for a multiple-choice quiz.

    Raises:
        OutputParseError: The answer is not a valid quiz.
        ProviderError: The provider call failed.
    """
    text = await coordinator.submit_turn(agent_id, participants, None, build_quiz_prompt(topic, count))
    quiz = parse_model_output(text, Quiz)
    quiz.responses = []
    if len(quiz.questions) != count:
        logger.warning("Quiz for %r has %d question(s), asked for %d", topic, len(quiz.questions), count)
    return quiz


def score_answers(quiz: Quiz, answers: Sequence[int]) -> tuple[int, int]:
    """Return ``(score, correct_count)``.

    Positions past the end of *answers* count as incorrect.  The score is
    ``100 * correct / total`` rounded half up; an empty quiz scores 0.
    """
    total = len(quiz.questions)
    correct = sum(
        1 for i, question in enumerate(quiz.questions)
        if i < len(answers) and answers[i] == question.correct
    )
    if total == 0:
        return 0, correct
    return math.floor(100 * correct / total + 0.5), correct


def record_response(chat: StudySessionChat, user_id: str, answers: Sequence[int]) -> QuizResponse:
    """Replace *user_id*'s response on the chat's quiz with a scored one.

    Raises:
        NotFoundError: The chat has no quiz.
    """
    if chat.quiz is None:
        raise NotFoundError("quiz", f"{chat.group_id}/{chat.topic}")
    score, correct = score_answers(chat.quiz, answers)
    response = QuizResponse(
        user_id=user_id,
        answers=list(answers),
        completed=True,
        score=score,
        correct_count=correct,
    )
    chat.quiz.responses = [r for r in chat.quiz.responses if r.user_id != user_id]
    chat.quiz.responses.append(response)
    return response


async def complete_quiz(
    chat: StudySessionChat,
    user: User,
    answers: Sequence[int],
    *,
    study_chats: StudyChatStore,
    hub: RealtimeHub,
) -> QuizResponse:
    """Record, persist, then announce a submission to the group room."""
    response = record_response(chat, user.id, answers)
    await study_chats.save(chat)
    event = QuizCompletedEvent(
        group_id=chat.group_id,
        topic=chat.topic,
        user=UserSummary.of(user),
        score=response.score,
    )
    await hub.emit_to_room(group_room(chat.group_id), QUIZ_COMPLETED, event)
    logger.info(
        "Quiz completed: group=%s topic=%r user=%s score=%d",
        chat.group_id, chat.topic, user.id, response.score,
    )
    return response


def missed_questions(quiz: Quiz, answers: Sequence[int]) -> list[str]:
    return [
        q.question for i, q in enumerate(quiz.questions)
        if i >= len(answers) or answers[i] != q.correct
    ]


async def share_results_with_group_agent(
    coordinator: SessionCoordinator,
    chat: StudySessionChat,
    user_name: str,
    response: QuizResponse,
    participants: Sequence[str] | None = None,
) -> None:
    """Tell the group's general assistant how a member did.

    Best-effort: failures are logged, never raised.
    """
    if chat.quiz is None:
        return
    prompt = build_quiz_results_prompt(
        topic=chat.topic,
        user_name=user_name,
        score=response.score,
        correct=response.correct_count,
        total=len(chat.quiz.questions),
        missed_questions=missed_questions(chat.quiz, response.answers),
    )
    try:
        sources = await coordinator.load_source_parts(
            chat.group_id, coordinator.settings.max_source_documents
        )
        await coordinator.submit_turn(
            group_agent_id(chat.group_id),
            participants,
            SYSTEM_SENDER,
            prompt,
            [Part.from_text(prompt), *sources],
        )
    except NexusError:
        logger.exception("Could not share quiz results with group %s assistant", chat.group_id)


def summarize_skills(
    chats: Sequence[StudySessionChat], users: dict[str, User]
) -> dict[str, list[SkillScore]]:
    """Current quiz scores of a group, by topic then by user."""
    topics: dict[str, list[SkillScore]] = {}
    for chat in chats:
        if chat.quiz is None or not chat.quiz.responses:
            continue
        total = len(chat.quiz.questions)
        topics[chat.topic] = [
            SkillScore(
                user_id=r.user_id,
                name=users[r.user_id].name if r.user_id in users else "",
                score=r.score,
                correct_count=r.correct_count,
                total_questions=total,
                completed=r.completed,
            )
            for r in chat.quiz.responses
        ]
    return topics
