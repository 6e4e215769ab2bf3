import json
import logging
import os
from datetime import date, datetime
from typing import List, Optional

from openai import AuthenticationError, OpenAI
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.analysis import round_half_up, session_score
from app.models import Driver, Question, QuizResponse, QuizSession
from app.schemas import ComprehensiveAnalysisReport

logger = logging.getLogger(__name__)

SUPPORTED_LANGUAGES = {
    "en", "es", "fr", "de", "it", "pt", "ru", "zh", "ja", "ko", "ar", "hi",
    "nl", "pl", "tr", "sv", "da", "fi", "no", "cs", "ro", "hu", "bg", "hr",
    "sk", "sl", "et", "lv", "lt", "th", "vi", "id", "ms", "tl", "sw", "af",
}
REPORT_SECTIONS = (
    "overview",
    "performance_trends",
    "driver_analysis",
    "question_analysis",
    "engagement_metrics",
    "time_analysis",
)


class QuizWorkflowError(RuntimeError):
    pass


class TranslationError(RuntimeError):
    pass


def update_streak(driver: Driver, quiz_date: date) -> None:
    if driver.last_quiz_date is None:
        driver.streak = 1
    else:
        gap = (quiz_date - driver.last_quiz_date).days
        if gap == 1:
            driver.streak = (driver.streak or 0) + 1
        elif gap != 0:
            driver.streak = 1
    driver.last_quiz_date = quiz_date


def start_daily_session(db: Session, driver: Driver, quiz_date: Optional[date] = None) -> QuizSession:
    quiz_date = quiz_date or datetime.utcnow().date()
    session = db.execute(
        select(QuizSession).where(QuizSession.driver_id == driver.id, QuizSession.quiz_date == quiz_date)
    ).scalar_one_or_none()
    if session and session.completed:
        raise QuizWorkflowError("Quiz already completed today")
    if session:
        return session

    session = QuizSession(driver_id=driver.id, quiz_date=quiz_date, completed=False, total_questions=0, total_correct=0)
    db.add(session)
    db.commit()
    db.refresh(session)
    logger.info("Started quiz session %s for driver %s on %s", session.id, driver.id, quiz_date)
    return session


def pick_daily_questions(db: Session, language: str, limit: int) -> List[Question]:
    stmt = (
        select(Question)
        .where(Question.is_active.is_(True), Question.language == language)
        .order_by(Question.id.asc())
        .limit(limit)
    )
    return list(db.execute(stmt).scalars())


def submit_answer(db: Session, session: QuizSession, question: Question, selected_option: int) -> dict:
    if session.completed:
        raise QuizWorkflowError("Quiz session is already completed")

    options = json.loads(question.options_json)
    if not 0 <= selected_option < len(options):
        raise QuizWorkflowError("Selected option is out of range")

    already_answered = db.execute(
        select(QuizResponse.id).where(
            QuizResponse.quiz_session_id == session.id, QuizResponse.question_id == question.id
        )
    ).first()
    if already_answered:
        raise QuizWorkflowError("Question already answered in this session")

    is_correct = selected_option == question.correct_option
    db.add(
        QuizResponse(
            quiz_session_id=session.id,
            question_id=question.id,
            selected_option=selected_option,
            correct=is_correct,
        )
    )
    session.total_questions += 1
    session.total_correct += int(is_correct)
    db.commit()

    return {
        "correct": is_correct,
        "correct_option": question.correct_option,
        "explanation": question.explanation or "",
        "session_stats": {
            "total_questions": session.total_questions,
            "total_correct": session.total_correct,
            "score": session_score(session.total_correct, session.total_questions),
        },
    }


def complete_session(db: Session, session: QuizSession) -> QuizSession:
    if session.completed:
        return session

    session.completed = True
    driver = session.driver
    if driver:
        driver.total_quizzes = (driver.total_quizzes or 0) + 1
        driver.total_correct = (driver.total_correct or 0) + session.total_correct
        update_streak(driver, session.quiz_date)
    db.commit()
    db.refresh(session)
    logger.info("Completed quiz session %s (score=%s)", session.id, session_score(session.total_correct, session.total_questions))
    return session


def driver_stats(db: Session, driver: Driver) -> dict:
    total, total_correct, total_questions = db.execute(
        select(
            func.count(QuizSession.id),
            func.coalesce(func.sum(QuizSession.total_correct), 0),
            func.coalesce(func.sum(QuizSession.total_questions), 0),
        ).where(QuizSession.driver_id == driver.id, QuizSession.completed.is_(True))
    ).one()

    return {
        "driver": {
            "id": driver.id,
            "total_quizzes": driver.total_quizzes or 0,
            "total_correct": driver.total_correct or 0,
            "streak": driver.streak or 0,
            "last_quiz_date": driver.last_quiz_date,
        },
        "sessions": {
            "total": total,
            "total_correct": total_correct,
            "total_questions": total_questions,
            "overall_accuracy": round_half_up(total_correct / total_questions * 100, 2) if total_questions else 0.0,
        },
    }


class TranslationService:
    def __init__(self):
        self.api_key = os.getenv("OPENAI_API_KEY")
        self.model = os.getenv("OPENAI_MODEL", "gpt-5")
        self.client = OpenAI(api_key=self.api_key) if self.api_key else None

    @staticmethod
    def is_supported(language: str) -> bool:
        return bool(language) and language.lower() in SUPPORTED_LANGUAGES

    def translate_texts(self, texts: List[str], target_language: str, source_language: str = "en") -> List[str]:
        if not texts:
            return []
        if not self.client:
            raise TranslationError("OPENAI_API_KEY is required to translate responses")

        prompt = (
            f"Translate each string in the JSON list below from {source_language} to {target_language}. "
            "Keep numbers, percentages and punctuation unchanged. "
            "Return JSON only with key 'translations' holding the translated strings in the same order. "
            f"Strings: {json.dumps(texts, ensure_ascii=False)}"
        )
        logger.info("Translating %s strings to %s via OpenAI", len(texts), target_language)
        try:
            response = self.client.responses.create(model=self.model, input=prompt)
        except AuthenticationError as exc:
            raise TranslationError("Invalid OpenAI API key") from exc

        payload = self._extract_json(response.output_text or "")
        translations = payload.get("translations")
        if not isinstance(translations, list) or len(translations) != len(texts):
            raise TranslationError(
                f"Expected {len(texts)} translations, got {len(translations) if isinstance(translations, list) else 0}"
            )
        if not all(isinstance(item, str) for item in translations):
            raise TranslationError("Translations must all be strings")
        return translations

    def translate_report(self, report: ComprehensiveAnalysisReport, target_language: str) -> ComprehensiveAnalysisReport:
        if target_language.lower() == "en" or not self.is_supported(target_language):
            return report

        data = report.model_dump()
        slots = []
        for section in REPORT_SECTIONS:
            slots.append((data[section], "explanation"))
        for insight in data["insights"]:
            slots.extend([(insight, "title"), (insight, "description")])
        for recommendation in data["recommendations"]:
            slots.extend([(recommendation, "title"), (recommendation, "description")])
            recommendation["action_items"] = list(recommendation["action_items"])
            slots.extend((recommendation["action_items"], idx) for idx in range(len(recommendation["action_items"])))

        translated = self.translate_texts([container[key] for container, key in slots], target_language.lower())
        for (container, key), text in zip(slots, translated):
            container[key] = text
        return ComprehensiveAnalysisReport.model_validate(data)

    @staticmethod
    def _extract_json(text: str):
        if not text or not text.strip():
            raise TranslationError("Model returned empty output while JSON was expected")

        normalized = text.strip()
        if normalized.startswith("```"):
            normalized = normalized.strip("`")
            if normalized.startswith("json"):
                normalized = normalized[4:]

        start = normalized.find("{")
        end = normalized.rfind("}")
        if start == -1 or end == -1 or end < start:
            preview = normalized[:200].replace("\n", " ")
            raise TranslationError(f"Model did not return a JSON object. Preview: {preview!r}")

        try:
            return json.loads(normalized[start : end + 1])
        except json.JSONDecodeError as exc:
            raise TranslationError(f"Model returned invalid JSON ({exc.msg} at line {exc.lineno})") from exc
