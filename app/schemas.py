from datetime import date
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class DriverCreate(BaseModel):
    name: str = Field(min_length=1)
    phone_number: str = Field(min_length=3)
    language: str = "en"


class DriverOut(BaseModel):
    id: int
    name: str
    phone_number: str
    language: str
    streak: int


class QuestionCreate(BaseModel):
    question_text: str = Field(min_length=1)
    options: List[str] = Field(min_length=4, max_length=4)
    correct_option: int = Field(ge=0, le=3)
    explanation: str = ""
    topic: Optional[str] = None
    language: str = "en"


class QuestionOut(BaseModel):
    id: int
    question_text: str
    options: List[str]
    topic: Optional[str]
    language: str


class DailyQuizResponse(BaseModel):
    session_id: int
    quiz_date: date
    language: str
    questions: List[QuestionOut]


class AnswerIn(BaseModel):
    question_id: int
    selected_option: int = Field(ge=0, le=3)


class SessionStatsOut(BaseModel):
    total_questions: int
    total_correct: int
    score: int


class AnswerResult(BaseModel):
    correct: bool
    correct_option: int
    explanation: str
    session_stats: SessionStatsOut


class CompleteSessionResponse(BaseModel):
    session_id: int
    completed: bool
    score: int
    streak: int


class DriverStatsSummary(BaseModel):
    id: int
    total_quizzes: int
    total_correct: int
    streak: int
    last_quiz_date: Optional[date]


class SessionTotalsOut(BaseModel):
    total: int
    total_correct: int
    total_questions: int
    overall_accuracy: float


class DriverStatsResponse(BaseModel):
    driver: DriverStatsSummary
    sessions: SessionTotalsOut


# Comprehensive analysis report


class ReportModel(BaseModel):
    model_config = ConfigDict(frozen=True)


class ScoreDistribution(ReportModel):
    excellent: int = 0
    good: int = 0
    average: int = 0
    poor: int = 0


class Overview(ReportModel):
    total_sessions: int
    completed_sessions: int
    completion_rate: float
    unique_drivers: int
    total_questions_answered: int
    total_correct_answers: int
    overall_accuracy: float
    average_score: float
    median_score: float
    score_distribution: ScoreDistribution
    explanation: str


class DailyTrend(ReportModel):
    date: date
    session_count: int
    average_score: float
    total_questions: int
    total_correct: int


class PerformanceTrends(ReportModel):
    daily_trends: Tuple[DailyTrend, ...]
    trend_direction: str
    first_half_average: float
    second_half_average: float
    change: float
    explanation: str


class DriverPerformance(ReportModel):
    driver_id: int
    driver_name: str
    driver_phone: Optional[str]
    driver_language: Optional[str]
    total_sessions: int
    completed_sessions: int
    total_questions: int
    total_correct: int
    scores: Tuple[int, ...]
    streak: int
    last_quiz_date: Optional[date]
    average_score: float
    accuracy: float
    completion_rate: float
    performance_category: str


class PerformanceDistribution(ReportModel):
    excellent: int = 0
    good: int = 0
    average: int = 0
    needs_improvement: int = 0


class DriverAnalysis(ReportModel):
    total_drivers: int
    average_sessions_per_driver: float
    top_performers: Tuple[DriverPerformance, ...]
    bottom_performers: Tuple[DriverPerformance, ...]
    most_active_drivers: Tuple[DriverPerformance, ...]
    performance_distribution: PerformanceDistribution
    explanation: str


class QuestionPerformance(ReportModel):
    question_id: int
    question_text: str
    topic: Optional[str]
    language: Optional[str]
    total_attempts: int
    correct_attempts: int
    incorrect_attempts: int
    option_selections: Dict[int, int]
    accuracy: float
    difficulty_level: str
    most_common_mistake: Optional[int]


class DifficultyDistribution(ReportModel):
    easy: int = 0
    medium: int = 0
    hard: int = 0


class TopicPerformance(ReportModel):
    topic: str
    total_questions: int
    total_attempts: int
    total_correct: int
    average_accuracy: float


class QuestionAnalysis(ReportModel):
    total_questions: int
    difficulty_distribution: DifficultyDistribution
    easiest_questions: Tuple[QuestionPerformance, ...]
    hardest_questions: Tuple[QuestionPerformance, ...]
    topic_analysis: Tuple[TopicPerformance, ...]
    explanation: str


class DailyEngagement(ReportModel):
    date: date
    unique_drivers: int
    total_sessions: int
    completed_sessions: int
    engagement_rate: float


class DriverEngagement(ReportModel):
    driver_id: int
    days_active: int
    total_sessions: int
    completed_sessions: int
    average_sessions_per_day: float


class EngagementMetrics(ReportModel):
    daily_engagement: Tuple[DailyEngagement, ...]
    average_days_active_per_driver: float
    most_engaged_drivers: Tuple[DriverEngagement, ...]
    peak_engagement_day: Optional[DailyEngagement]
    explanation: str


class PeakHour(ReportModel):
    hour: int
    sessions: int
    time_period: str


class PeakDay(ReportModel):
    day: str
    sessions: int


class TimeAnalysis(ReportModel):
    reporting_timezone: str
    hour_distribution: Dict[int, int]
    day_of_week_distribution: Dict[str, int]
    peak_hour: Optional[PeakHour]
    peak_day: Optional[PeakDay]
    explanation: str


class Insight(ReportModel):
    type: str
    category: str
    title: str
    description: str
    impact: str
    actionable: bool


class Recommendation(ReportModel):
    priority: str
    category: str
    title: str
    description: str
    action_items: Tuple[str, ...]


class ComprehensiveAnalysisReport(ReportModel):
    overview: Overview
    performance_trends: PerformanceTrends
    driver_analysis: DriverAnalysis
    question_analysis: QuestionAnalysis
    engagement_metrics: EngagementMetrics
    time_analysis: TimeAnalysis
    insights: Tuple[Insight, ...]
    recommendations: Tuple[Recommendation, ...]
