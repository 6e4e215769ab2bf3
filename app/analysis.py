"""Comprehensive analysis of quiz history.

Every stage is a pure function of the session/response records handed to it by
the storage layer. ``run_comprehensive_analysis`` composes the stages and feeds
their results to the insight and recommendation rules.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_DOWN, ROUND_HALF_UP, Decimal
from statistics import mean, median
from typing import Dict, List, Optional, Sequence
from zoneinfo import ZoneInfo

from app.schemas import (
    ComprehensiveAnalysisReport,
    DailyEngagement,
    DailyTrend,
    DifficultyDistribution,
    DriverAnalysis,
    DriverEngagement,
    DriverPerformance,
    EngagementMetrics,
    Insight,
    Overview,
    PeakDay,
    PeakHour,
    PerformanceDistribution,
    PerformanceTrends,
    QuestionAnalysis,
    QuestionPerformance,
    Recommendation,
    ScoreDistribution,
    TimeAnalysis,
    TopicPerformance,
)

logger = logging.getLogger(__name__)

RANKING_SIZE = 10
TREND_THRESHOLD = 5
UNCATEGORIZED_TOPIC = "Uncategorized"
DAY_NAMES = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]


def round_half_up(value, places: int = 0):
    """Round to ``places`` decimals with exact halves moving towards positive infinity.

    Whole-number rounding returns an ``int``; anything finer returns a ``float``.
    """
    rounding = ROUND_HALF_UP if value >= 0 else ROUND_HALF_DOWN
    rounded = Decimal(value).quantize(Decimal(1).scaleb(-places), rounding=rounding)
    return int(rounded) if places == 0 else float(rounded)


def session_score(total_correct: int, total_questions: int) -> int:
    if not total_questions:
        return 0
    return round_half_up(total_correct / total_questions * 100)


@dataclass(frozen=True)
class SessionRecord:
    id: int
    driver_id: int
    quiz_date: date
    created_at: datetime
    completed: bool
    total_questions: int
    total_correct: int
    driver_name: str = "Unknown"
    driver_phone: Optional[str] = None
    driver_language: Optional[str] = None
    driver_streak: int = 0

    @property
    def score(self) -> int:
        return session_score(self.total_correct, self.total_questions)


@dataclass(frozen=True)
class ResponseRecord:
    id: int
    session_id: int
    question_id: int
    selected_option: int
    correct: bool
    question_text: str = "Unknown"
    topic: Optional[str] = None
    language: Optional[str] = None
    correct_option: Optional[int] = None


def _pct(part, whole) -> float:
    return round_half_up(part / whole * 100, 2) if whole else 0.0


def _top_and_bottom(rows: list, key: str):
    ranked = sorted(rows, key=lambda row: row[key], reverse=True)
    return ranked[:RANKING_SIZE], list(reversed(ranked[-RANKING_SIZE:]))


def calculate_overview(sessions: Sequence[SessionRecord], responses: Sequence[ResponseRecord]) -> Overview:
    total_sessions = len(sessions)
    completed_sessions = sum(1 for s in sessions if s.completed)
    completion_rate = _pct(completed_sessions, total_sessions)
    unique_drivers = len({s.driver_id for s in sessions})

    total_answered = len(responses)
    total_correct = sum(1 for r in responses if r.correct)
    overall_accuracy = _pct(total_correct, total_answered)

    scores = [s.score for s in sessions if s.completed]
    average_score = round_half_up(mean(scores), 2) if scores else 0.0
    median_score = round_half_up(median(scores), 2) if scores else 0.0

    bands = {"excellent": 0, "good": 0, "average": 0, "poor": 0}
    for score in scores:
        if score >= 90:
            bands["excellent"] += 1
        elif score >= 70:
            bands["good"] += 1
        elif score >= 50:
            bands["average"] += 1
        else:
            bands["poor"] += 1
    distribution = ScoreDistribution(**bands)

    explanation = (
        f"Out of {total_sessions} total quiz sessions, {completed_sessions} were completed "
        f"({completion_rate}% completion rate). {unique_drivers} unique drivers participated. "
        f"The overall accuracy across all questions was {overall_accuracy}%, with an average score of "
        f"{average_score}% and median score of {median_score}%."
    )
    return Overview(
        total_sessions=total_sessions,
        completed_sessions=completed_sessions,
        completion_rate=completion_rate,
        unique_drivers=unique_drivers,
        total_questions_answered=total_answered,
        total_correct_answers=total_correct,
        overall_accuracy=overall_accuracy,
        average_score=average_score,
        median_score=median_score,
        score_distribution=distribution,
        explanation=explanation,
    )


def classify_trend(daily_averages: Sequence[float]) -> tuple[str, float, float, float]:
    """Compare the mean of the first half of the days against the second half.

    The split point is ``n // 2``, so with an odd number of days the second
    half holds the extra day. Fewer than two days is always ``stable``.
    """
    if len(daily_averages) < 2:
        return "stable", 0.0, 0.0, 0.0

    mid = len(daily_averages) // 2
    first_avg = mean(daily_averages[:mid])
    second_avg = mean(daily_averages[mid:])
    change = second_avg - first_avg
    if change > TREND_THRESHOLD:
        direction = "improving"
    elif change < -TREND_THRESHOLD:
        direction = "declining"
    else:
        direction = "stable"
    return direction, first_avg, second_avg, change


def calculate_performance_trends(sessions: Sequence[SessionRecord]) -> PerformanceTrends:
    by_day: Dict[date, List[SessionRecord]] = {}
    for session in sessions:
        if session.completed:
            by_day.setdefault(session.quiz_date, []).append(session)

    daily_trends = [
        DailyTrend(
            date=day,
            session_count=len(day_sessions),
            average_score=round_half_up(mean(s.score for s in day_sessions), 2),
            total_questions=sum(s.total_questions for s in day_sessions),
            total_correct=sum(s.total_correct for s in day_sessions),
        )
        for day, day_sessions in sorted(by_day.items())
    ]

    direction, first_avg, second_avg, change = classify_trend([d.average_score for d in daily_trends])
    change = round_half_up(change, 2)
    if direction == "improving":
        detail = f"Performance is improving with an average score increase of {change}% points."
    elif direction == "declining":
        detail = f"Performance is declining with an average score decrease of {abs(change)}% points."
    elif len(daily_trends) >= 2:
        detail = f"Performance remains relatively stable with minimal change ({change}% points)."
    else:
        detail = "At least two days of completed sessions are needed to detect a trend."

    completed_total = sum(d.session_count for d in daily_trends)
    return PerformanceTrends(
        daily_trends=daily_trends,
        trend_direction=direction,
        first_half_average=round_half_up(first_avg, 2),
        second_half_average=round_half_up(second_avg, 2),
        change=change,
        explanation=(
            f"Performance trends show {len(daily_trends)} days of activity. {detail} "
            f"The data indicates {completed_total} total completed sessions over the period."
        ),
    )


def categorize_performance(average_score: float, accuracy: float, completion_rate: float) -> str:
    if average_score >= 80 and accuracy >= 75 and completion_rate >= 80:
        return "excellent"
    if average_score >= 60 and accuracy >= 60 and completion_rate >= 60:
        return "good"
    if average_score >= 40 and accuracy >= 40:
        return "average"
    return "needs_improvement"


def analyze_drivers(sessions: Sequence[SessionRecord]) -> DriverAnalysis:
    driver_stats: Dict[int, dict] = {}
    for session in sessions:
        stats = driver_stats.setdefault(
            session.driver_id,
            {
                "driver_id": session.driver_id,
                "driver_name": session.driver_name,
                "driver_phone": session.driver_phone,
                "driver_language": session.driver_language,
                "total_sessions": 0,
                "completed_sessions": 0,
                "total_questions": 0,
                "total_correct": 0,
                "scores": [],
                "streak": session.driver_streak,
                "last_quiz_date": None,
            },
        )
        stats["total_sessions"] += 1
        if session.completed:
            stats["completed_sessions"] += 1
            stats["total_questions"] += session.total_questions
            stats["total_correct"] += session.total_correct
            stats["scores"].append(session.score)
        if stats["last_quiz_date"] is None or session.quiz_date > stats["last_quiz_date"]:
            stats["last_quiz_date"] = session.quiz_date

    drivers = []
    for stats in driver_stats.values():
        average_score = mean(stats["scores"]) if stats["scores"] else 0
        accuracy = _pct(stats["total_correct"], stats["total_questions"])
        completion_rate = _pct(stats["completed_sessions"], stats["total_sessions"])
        drivers.append(
            {
                **stats,
                "average_score": round_half_up(average_score, 2),
                "accuracy": accuracy,
                "completion_rate": completion_rate,
                "performance_category": categorize_performance(average_score, accuracy, completion_rate),
            }
        )

    top, bottom = _top_and_bottom(drivers, "average_score")
    most_active = sorted(drivers, key=lambda d: d["completed_sessions"], reverse=True)[:RANKING_SIZE]

    categories = {"excellent": 0, "good": 0, "average": 0, "needs_improvement": 0}
    for driver in drivers:
        categories[driver["performance_category"]] += 1
    distribution = PerformanceDistribution(**categories)

    average_sessions = (
        round_half_up(sum(d["completed_sessions"] for d in drivers) / len(drivers), 2) if drivers else 0.0
    )
    top_score = round_half_up(top[0]["average_score"]) if top else 0
    bottom_score = round_half_up(bottom[0]["average_score"]) if bottom else 0
    return DriverAnalysis(
        total_drivers=len(drivers),
        average_sessions_per_driver=average_sessions,
        top_performers=[DriverPerformance(**d) for d in top],
        bottom_performers=[DriverPerformance(**d) for d in bottom],
        most_active_drivers=[DriverPerformance(**d) for d in most_active],
        performance_distribution=distribution,
        explanation=(
            f"Analysis of {len(drivers)} drivers shows an average of {average_sessions} completed sessions "
            f"per driver. Top performers average {top_score}% while drivers needing support average "
            f"{bottom_score}%."
        ),
    )


def categorize_difficulty(accuracy: float) -> str:
    if accuracy >= 70:
        return "easy"
    if accuracy >= 40:
        return "medium"
    return "hard"


def most_common_selection(option_selections: Dict[int, int]) -> Optional[int]:
    # max() keeps the first key reaching the highest count
    if not option_selections:
        return None
    return max(option_selections, key=option_selections.get)


def analyze_questions(responses: Sequence[ResponseRecord], language: Optional[str] = None) -> QuestionAnalysis:
    question_stats: Dict[int, dict] = {}
    for response in responses:
        stats = question_stats.setdefault(
            response.question_id,
            {
                "question_id": response.question_id,
                "question_text": response.question_text,
                "topic": response.topic,
                "language": response.language,
                "total_attempts": 0,
                "correct_attempts": 0,
                "incorrect_attempts": 0,
                "option_selections": {},
            },
        )
        stats["total_attempts"] += 1
        if response.correct:
            stats["correct_attempts"] += 1
        else:
            stats["incorrect_attempts"] += 1
        selections = stats["option_selections"]
        selections[response.selected_option] = selections.get(response.selected_option, 0) + 1

    questions = []
    for stats in question_stats.values():
        if language and stats["language"] != language:
            continue
        accuracy = _pct(stats["correct_attempts"], stats["total_attempts"])
        questions.append(
            {
                **stats,
                "accuracy": accuracy,
                "difficulty_level": categorize_difficulty(accuracy),
                "most_common_mistake": most_common_selection(stats["option_selections"]),
            }
        )

    levels = {"easy": 0, "medium": 0, "hard": 0}
    for question in questions:
        levels[question["difficulty_level"]] += 1
    distribution = DifficultyDistribution(**levels)

    easiest, hardest = _top_and_bottom(questions, "accuracy")

    topic_stats: Dict[str, dict] = {}
    for question in questions:
        topic = question["topic"] or UNCATEGORIZED_TOPIC
        row = topic_stats.setdefault(
            topic, {"topic": topic, "total_questions": 0, "total_attempts": 0, "total_correct": 0}
        )
        row["total_questions"] += 1
        row["total_attempts"] += question["total_attempts"]
        row["total_correct"] += question["correct_attempts"]
    topic_analysis = sorted(
        (TopicPerformance(**row, average_accuracy=_pct(row["total_correct"], row["total_attempts"]))
         for row in topic_stats.values()),
        key=lambda t: t.average_accuracy,
        reverse=True,
    )

    total = len(questions)
    explanation = (
        f"Analysis of {total} questions shows {distribution.easy} easy questions "
        f"({round_half_up(_pct(distribution.easy, total))}%), {distribution.medium} medium questions "
        f"({round_half_up(_pct(distribution.medium, total))}%), and {distribution.hard} hard questions "
        f"({round_half_up(_pct(distribution.hard, total))}%). The easiest questions have "
        f"{round_half_up(easiest[0]['accuracy']) if easiest else 0}% accuracy while the hardest have "
        f"{round_half_up(hardest[0]['accuracy']) if hardest else 0}% accuracy."
    )
    return QuestionAnalysis(
        total_questions=total,
        difficulty_distribution=distribution,
        easiest_questions=[QuestionPerformance(**q) for q in easiest],
        hardest_questions=[QuestionPerformance(**q) for q in hardest],
        topic_analysis=topic_analysis,
        explanation=explanation,
    )


def calculate_engagement_metrics(sessions: Sequence[SessionRecord]) -> EngagementMetrics:
    daily: Dict[date, dict] = {}
    per_driver: Dict[int, dict] = {}
    for session in sessions:
        day = daily.setdefault(
            session.quiz_date, {"drivers": set(), "total_sessions": 0, "completed_sessions": 0}
        )
        day["drivers"].add(session.driver_id)
        day["total_sessions"] += 1
        day["completed_sessions"] += int(session.completed)

        driver = per_driver.setdefault(
            session.driver_id, {"days": set(), "total_sessions": 0, "completed_sessions": 0}
        )
        driver["days"].add(session.quiz_date)
        driver["total_sessions"] += 1
        driver["completed_sessions"] += int(session.completed)

    daily_engagement = [
        DailyEngagement(
            date=quiz_date,
            unique_drivers=len(row["drivers"]),
            total_sessions=row["total_sessions"],
            completed_sessions=row["completed_sessions"],
            engagement_rate=_pct(row["completed_sessions"], row["total_sessions"]),
        )
        for quiz_date, row in sorted(daily.items())
    ]
    driver_engagement = [
        DriverEngagement(
            driver_id=driver_id,
            days_active=len(row["days"]),
            total_sessions=row["total_sessions"],
            completed_sessions=row["completed_sessions"],
            average_sessions_per_day=(
                round_half_up(row["completed_sessions"] / len(row["days"]), 2) if row["days"] else 0.0
            ),
        )
        for driver_id, row in per_driver.items()
    ]

    average_days_active = (
        round_half_up(mean(d.days_active for d in driver_engagement), 2) if driver_engagement else 0.0
    )
    peak_day = max(daily_engagement, key=lambda d: d.unique_drivers) if daily_engagement else None
    return EngagementMetrics(
        daily_engagement=daily_engagement,
        average_days_active_per_driver=average_days_active,
        most_engaged_drivers=sorted(driver_engagement, key=lambda d: d.days_active, reverse=True)[:RANKING_SIZE],
        peak_engagement_day=peak_day,
        explanation=(
            f"Engagement analysis shows drivers are active an average of {average_days_active} days. "
            f"The peak engagement day had {peak_day.unique_drivers if peak_day else 0} unique drivers participating."
        ),
    )


def time_period(hour: int) -> str:
    if 5 <= hour < 12:
        return "Morning"
    if 12 <= hour < 17:
        return "Afternoon"
    if 17 <= hour < 21:
        return "Evening"
    return "Night"


def _reporting_zone(name: str):
    return timezone.utc if name.upper() == "UTC" else ZoneInfo(name)


def to_reporting_time(created_at: datetime, zone) -> datetime:
    # naive timestamps are stored in UTC
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    return created_at.astimezone(zone)


def analyze_time_patterns(sessions: Sequence[SessionRecord], reporting_timezone: str = "UTC") -> TimeAnalysis:
    zone = _reporting_zone(reporting_timezone)
    hours: Dict[int, int] = {}
    days: Dict[str, int] = {}
    for session in sessions:
        local = to_reporting_time(session.created_at, zone)
        hours[local.hour] = hours.get(local.hour, 0) + 1
        day_name = DAY_NAMES[local.weekday()]
        days[day_name] = days.get(day_name, 0) + 1

    hour_distribution = dict(sorted(hours.items()))
    peak_hour = None
    if hour_distribution:
        hour = max(hour_distribution, key=hour_distribution.get)
        peak_hour = PeakHour(hour=hour, sessions=hour_distribution[hour], time_period=time_period(hour))
    peak_day = None
    if days:
        day_name = max(days, key=days.get)
        peak_day = PeakDay(day=day_name, sessions=days[day_name])

    return TimeAnalysis(
        reporting_timezone=reporting_timezone,
        hour_distribution=hour_distribution,
        day_of_week_distribution=days,
        peak_hour=peak_hour,
        peak_day=peak_day,
        explanation=(
            f"Time pattern analysis shows peak activity at {peak_hour.time_period if peak_hour else 'N/A'} "
            f"({peak_hour.sessions if peak_hour else 0} sessions) and most activity on "
            f"{peak_day.day if peak_day else 'N/A'} ({peak_day.sessions if peak_day else 0} sessions)."
        ),
    )


def generate_insights(
    overview: Overview,
    trends: PerformanceTrends,
    questions: QuestionAnalysis,
    engagement: EngagementMetrics,
) -> List[Insight]:
    insights = []

    if overview.overall_accuracy < 60:
        insights.append(
            Insight(
                type="warning",
                category="Performance",
                title="Low Overall Accuracy",
                description=(
                    f"The overall accuracy of {overview.overall_accuracy}% is below the recommended threshold "
                    "of 60%. This suggests that questions may be too difficult or drivers need additional training."
                ),
                impact="high",
                actionable=True,
            )
        )
    if overview.overall_accuracy > 85:
        insights.append(
            Insight(
                type="success",
                category="Performance",
                title="Excellent Overall Performance",
                description=(
                    f"The overall accuracy of {overview.overall_accuracy}% indicates strong driver knowledge "
                    "and understanding."
                ),
                impact="low",
                actionable=False,
            )
        )
    if overview.completion_rate < 70:
        insights.append(
            Insight(
                type="warning",
                category="Engagement",
                title="Low Completion Rate",
                description=(
                    f"Only {overview.completion_rate}% of quiz sessions are being completed. This may indicate "
                    "that quizzes are too long, too difficult, or drivers are losing interest."
                ),
                impact="high",
                actionable=True,
            )
        )
    if trends.trend_direction == "declining":
        insights.append(
            Insight(
                type="warning",
                category="Trends",
                title="Declining Performance Trend",
                description=trends.explanation,
                impact="medium",
                actionable=True,
            )
        )
    if trends.trend_direction == "improving":
        insights.append(
            Insight(
                type="success",
                category="Trends",
                title="Improving Performance Trend",
                description=trends.explanation,
                impact="low",
                actionable=False,
            )
        )
    if questions.total_questions:
        hard_ratio = questions.difficulty_distribution.hard / questions.total_questions
        if hard_ratio > 0.4:
            insights.append(
                Insight(
                    type="info",
                    category="Questions",
                    title="High Proportion of Difficult Questions",
                    description=(
                        f"{round_half_up(hard_ratio * 100)}% of questions are categorized as hard. Consider reviewing "
                        "these questions to ensure they are appropriate for the target audience."
                    ),
                    impact="medium",
                    actionable=True,
                )
            )
    if engagement.average_days_active_per_driver < 3:
        insights.append(
            Insight(
                type="warning",
                category="Engagement",
                title="Low Driver Engagement",
                description=(
                    f"Drivers are active an average of only {engagement.average_days_active_per_driver} days. "
                    "Consider implementing engagement strategies to increase participation."
                ),
                impact="high",
                actionable=True,
            )
        )
    return insights


def generate_recommendations(
    overview: Overview,
    drivers: DriverAnalysis,
    questions: QuestionAnalysis,
    time_analysis: TimeAnalysis,
) -> List[Recommendation]:
    recommendations = []

    if overview.overall_accuracy < 60:
        recommendations.append(
            Recommendation(
                priority="high",
                category="Performance",
                title="Improve Question Difficulty Balance",
                description=(
                    "Consider reviewing and adjusting question difficulty. Add more medium-difficulty questions "
                    "and provide better explanations."
                ),
                action_items=[
                    "Review hardest questions and consider simplifying or improving explanations",
                    "Add more practice questions for difficult topics",
                    "Provide additional learning resources for low-performing areas",
                ],
            )
        )
    if overview.completion_rate < 70:
        recommendations.append(
            Recommendation(
                priority="high",
                category="Engagement",
                title="Increase Quiz Completion Rates",
                description="Implement strategies to encourage drivers to complete quizzes.",
                action_items=[
                    "Reduce quiz length if quizzes are too long",
                    "Add progress indicators and encouragement messages",
                    "Consider gamification elements like streaks and achievements",
                    "Send reminders for incomplete quizzes",
                ],
            )
        )
    bottom = drivers.bottom_performers
    if bottom and bottom[0].average_score < 50:
        recommendations.append(
            Recommendation(
                priority="medium",
                category="Support",
                title="Provide Additional Support to Struggling Drivers",
                description="Several drivers are performing below 50% average score. Consider targeted support.",
                action_items=[
                    f"Reach out to {len(bottom)} drivers with lowest scores",
                    "Provide personalized learning paths",
                    "Offer additional practice opportunities",
                    "Schedule review sessions for difficult topics",
                ],
            )
        )
    hardest = questions.hardest_questions
    if hardest and hardest[0].accuracy < 30:
        recommendations.append(
            Recommendation(
                priority="medium",
                category="Questions",
                title="Review and Improve Difficult Questions",
                description=(
                    "Some questions have very low accuracy rates, which may indicate unclear wording "
                    "or incorrect answers."
                ),
                action_items=[
                    f"Review {len(hardest)} questions with accuracy below 30%",
                    "Check for ambiguous wording or unclear options",
                    "Verify correct answers are accurate",
                    "Consider rewriting or removing problematic questions",
                ],
            )
        )
    peak_hour = time_analysis.peak_hour
    if peak_hour is not None:
        recommendations.append(
            Recommendation(
                priority="low",
                category="Timing",
                title="Optimize Notification Timing",
                description=(
                    f"Peak activity occurs at {peak_hour.time_period}. Consider timing notifications accordingly."
                ),
                action_items=[
                    f"Schedule push notifications around {peak_hour.time_period} ({peak_hour.hour}:00)",
                    "Send daily quiz reminders during peak hours",
                    "Analyze if off-peak hours can be improved with better timing",
                ],
            )
        )
    return recommendations


def run_comprehensive_analysis(
    sessions: Sequence[SessionRecord],
    responses: Sequence[ResponseRecord],
    *,
    language: Optional[str] = None,
    reporting_timezone: str = "UTC",
) -> ComprehensiveAnalysisReport:
    session_ids = {s.id for s in sessions}
    known_responses = [r for r in responses if r.session_id in session_ids]
    orphaned = len(responses) - len(known_responses)
    if orphaned:
        logger.warning("Skipping %s responses that reference sessions outside the analysed set", orphaned)

    logger.info(
        "Running comprehensive analysis (sessions=%s, responses=%s, language=%s, timezone=%s)",
        len(sessions),
        len(known_responses),
        language,
        reporting_timezone,
    )
    overview = calculate_overview(sessions, known_responses)
    trends = calculate_performance_trends(sessions)
    drivers = analyze_drivers(sessions)
    questions = analyze_questions(known_responses, language)
    engagement = calculate_engagement_metrics(sessions)
    time_analysis = analyze_time_patterns(sessions, reporting_timezone)

    return ComprehensiveAnalysisReport(
        overview=overview,
        performance_trends=trends,
        driver_analysis=drivers,
        question_analysis=questions,
        engagement_metrics=engagement,
        time_analysis=time_analysis,
        insights=generate_insights(overview, trends, questions, engagement),
        recommendations=generate_recommendations(overview, drivers, questions, time_analysis),
    )
