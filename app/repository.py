from datetime import date
from typing import List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.analysis import ResponseRecord, SessionRecord
from app.models import Driver, Question, QuizResponse, QuizSession


def load_sessions(
    db: Session,
    *,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    driver_id: Optional[int] = None,
) -> List[SessionRecord]:
    stmt = select(QuizSession, Driver).outerjoin(Driver, Driver.id == QuizSession.driver_id)
    if start_date:
        stmt = stmt.where(QuizSession.quiz_date >= start_date)
    if end_date:
        stmt = stmt.where(QuizSession.quiz_date <= end_date)
    if driver_id:
        stmt = stmt.where(QuizSession.driver_id == driver_id)
    stmt = stmt.order_by(QuizSession.quiz_date.desc(), QuizSession.id.asc())

    return [
        SessionRecord(
            id=session.id,
            driver_id=session.driver_id,
            quiz_date=session.quiz_date,
            created_at=session.created_at,
            completed=bool(session.completed),
            total_questions=session.total_questions or 0,
            total_correct=session.total_correct or 0,
            driver_name=driver.name if driver else "Unknown",
            driver_phone=driver.phone_number if driver else None,
            driver_language=driver.language if driver else None,
            driver_streak=(driver.streak or 0) if driver else 0,
        )
        for session, driver in db.execute(stmt).all()
    ]


def load_responses(db: Session, session_ids: Sequence[int]) -> List[ResponseRecord]:
    if not session_ids:
        return []

    stmt = (
        select(QuizResponse, Question)
        .outerjoin(Question, Question.id == QuizResponse.question_id)
        .where(QuizResponse.quiz_session_id.in_(list(session_ids)))
        .order_by(QuizResponse.id.asc())
    )
    return [
        ResponseRecord(
            id=response.id,
            session_id=response.quiz_session_id,
            question_id=response.question_id,
            selected_option=response.selected_option,
            correct=bool(response.correct),
            question_text=question.question_text if question else "Unknown",
            topic=question.topic if question else None,
            language=question.language if question else None,
            correct_option=question.correct_option if question else None,
        )
        for response, question in db.execute(stmt).all()
    ]
