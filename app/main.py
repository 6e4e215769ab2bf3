import json
import logging
import os
from datetime import date
from typing import Optional
from zoneinfo import ZoneInfoNotFoundError

from fastapi import Depends, FastAPI, HTTPException
from sqlalchemy import select, text
from sqlalchemy.orm import Session

from app.analysis import run_comprehensive_analysis, session_score
from app.database import Base, engine, get_db
from app.models import Driver, Question, QuizSession
from app.repository import load_responses, load_sessions
from app.schemas import (
    AnswerIn,
    AnswerResult,
    CompleteSessionResponse,
    ComprehensiveAnalysisReport,
    DailyQuizResponse,
    DriverCreate,
    DriverOut,
    DriverStatsResponse,
    QuestionCreate,
    QuestionOut,
)
from app.services import (
    QuizWorkflowError,
    TranslationError,
    TranslationService,
    complete_session,
    driver_stats,
    pick_daily_questions,
    start_daily_session,
    submit_answer,
)


app = FastAPI(title="Driver Quiz Analytics")
logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
logger = logging.getLogger(__name__)
translator = TranslationService()

REPORT_TIMEZONE = os.getenv("REPORT_TIMEZONE", "UTC")
DAILY_QUESTION_COUNT = int(os.getenv("DAILY_QUESTION_COUNT", "5"))

Base.metadata.create_all(bind=engine)


def _get_driver(db: Session, driver_id: int) -> Driver:
    driver = db.get(Driver, driver_id)
    if not driver:
        raise HTTPException(status_code=404, detail="Driver not found")
    return driver


def _get_session(db: Session, session_id: int) -> QuizSession:
    session = db.get(QuizSession, session_id)
    if not session:
        raise HTTPException(status_code=404, detail="Quiz session not found")
    return session


def _question_out(question: Question) -> dict:
    return {
        "id": question.id,
        "question_text": question.question_text,
        "options": json.loads(question.options_json),
        "topic": question.topic,
        "language": question.language,
    }


@app.get("/api/health")
def health(db: Session = Depends(get_db)):
    db.execute(text("SELECT 1"))
    return {"status": "ok"}


@app.post("/api/drivers", response_model=DriverOut)
def create_driver(payload: DriverCreate, db: Session = Depends(get_db)):
    existing = db.execute(select(Driver).where(Driver.phone_number == payload.phone_number)).scalar_one_or_none()
    if existing:
        raise HTTPException(status_code=400, detail="Phone number already registered")

    driver = Driver(name=payload.name, phone_number=payload.phone_number, language=payload.language, streak=0)
    db.add(driver)
    db.commit()
    db.refresh(driver)
    return {
        "id": driver.id,
        "name": driver.name,
        "phone_number": driver.phone_number,
        "language": driver.language,
        "streak": driver.streak,
    }


@app.get("/api/drivers/{driver_id}/stats", response_model=DriverStatsResponse)
def get_driver_stats(driver_id: int, db: Session = Depends(get_db)):
    return driver_stats(db, _get_driver(db, driver_id))


@app.post("/api/questions", response_model=QuestionOut)
def create_question(payload: QuestionCreate, db: Session = Depends(get_db)):
    question = Question(
        question_text=payload.question_text,
        options_json=json.dumps(payload.options),
        correct_option=payload.correct_option,
        explanation=payload.explanation,
        topic=payload.topic,
        language=payload.language,
        is_active=True,
    )
    db.add(question)
    db.commit()
    db.refresh(question)
    return _question_out(question)


@app.post("/api/drivers/{driver_id}/quiz/start", response_model=DailyQuizResponse)
def start_daily_quiz(driver_id: int, db: Session = Depends(get_db)):
    driver = _get_driver(db, driver_id)
    questions = pick_daily_questions(db, driver.language, DAILY_QUESTION_COUNT)
    if not questions:
        raise HTTPException(status_code=404, detail="No questions available")

    try:
        session = start_daily_session(db, driver)
    except QuizWorkflowError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    return {
        "session_id": session.id,
        "quiz_date": session.quiz_date,
        "language": driver.language,
        "questions": [_question_out(q) for q in questions],
    }


@app.post("/api/quiz/sessions/{session_id}/answers", response_model=AnswerResult)
def answer_question(session_id: int, payload: AnswerIn, db: Session = Depends(get_db)):
    session = _get_session(db, session_id)
    question = db.get(Question, payload.question_id)
    if not question:
        raise HTTPException(status_code=404, detail="Question not found")

    try:
        return submit_answer(db, session, question, payload.selected_option)
    except QuizWorkflowError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.post("/api/quiz/sessions/{session_id}/complete", response_model=CompleteSessionResponse)
def finish_session(session_id: int, db: Session = Depends(get_db)):
    session = complete_session(db, _get_session(db, session_id))
    return {
        "session_id": session.id,
        "completed": session.completed,
        "score": session_score(session.total_correct, session.total_questions),
        "streak": session.driver.streak if session.driver else 0,
    }


@app.get("/api/analysis/comprehensive", response_model=ComprehensiveAnalysisReport)
def get_comprehensive_analysis(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    driver_id: Optional[int] = None,
    language: Optional[str] = None,
    lang: Optional[str] = None,
    db: Session = Depends(get_db),
):
    if start_date and end_date and start_date > end_date:
        raise HTTPException(status_code=400, detail="start_date must not be after end_date")

    sessions = load_sessions(db, start_date=start_date, end_date=end_date, driver_id=driver_id)
    responses = load_responses(db, [s.id for s in sessions])
    try:
        report = run_comprehensive_analysis(
            sessions, responses, language=language, reporting_timezone=REPORT_TIMEZONE
        )
    except ZoneInfoNotFoundError as exc:
        raise HTTPException(status_code=500, detail=f"Unknown REPORT_TIMEZONE {REPORT_TIMEZONE!r}") from exc

    if lang and lang.lower() != "en":
        if not translator.is_supported(lang):
            logger.warning("Unsupported language code %r, returning untranslated report", lang)
        else:
            try:
                report = translator.translate_report(report, lang)
            except TranslationError as exc:
                logger.warning("Report translation to %s failed (%s), returning untranslated report", lang, exc)
    return report
