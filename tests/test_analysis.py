import logging
from datetime import date, datetime, time

import pytest
from pydantic import ValidationError

from app.analysis import (
    ResponseRecord,
    SessionRecord,
    analyze_drivers,
    analyze_questions,
    analyze_time_patterns,
    calculate_engagement_metrics,
    calculate_overview,
    calculate_performance_trends,
    categorize_difficulty,
    categorize_performance,
    most_common_selection,
    round_half_up,
    run_comprehensive_analysis,
    time_period,
)

_ids = iter(range(1, 100000))


def make_session(driver_id, quiz_date, correct, total, completed=True, created_at=None, streak=0):
    day = date.fromisoformat(quiz_date)
    return SessionRecord(
        id=next(_ids),
        driver_id=driver_id,
        quiz_date=day,
        created_at=created_at or datetime.combine(day, time(9, 0)),
        completed=completed,
        total_questions=total,
        total_correct=correct,
        driver_name=f"Driver {driver_id}",
        driver_phone=f"+49151000{driver_id}",
        driver_language="en",
        driver_streak=streak,
    )


def make_response(session_id, question_id, selected_option, correct, topic="Road signs", language="en"):
    return ResponseRecord(
        id=next(_ids),
        session_id=session_id,
        question_id=question_id,
        selected_option=selected_option,
        correct=correct,
        question_text=f"Question {question_id}",
        topic=topic,
        language=language,
        correct_option=1,
    )


def test_session_score_rounds_and_guards_empty_sessions():
    assert make_session(1, "2024-01-01", 2, 3).score == 67
    assert make_session(1, "2024-01-01", 0, 0, completed=False).score == 0


def test_session_score_rounds_halves_up():
    assert make_session(1, "2024-01-01", 1, 8).score == 13
    assert make_session(1, "2024-01-01", 5, 8).score == 63
    assert make_session(1, "2024-01-01", 3, 8).score == 38


@pytest.mark.parametrize(
    "value,places,expected",
    [(12.5, 0, 13), (62.5, 0, 63), (-2.5, 0, -2), (0.125, 2, 0.13), (-0.125, 2, -0.12), (80, 2, 80.0)],
)
def test_round_half_up(value, places, expected):
    result = round_half_up(value, places)
    assert result == expected
    assert isinstance(result, int if places == 0 else float)


def test_empty_input_yields_zeroed_report():
    report = run_comprehensive_analysis([], [])

    overview = report.overview
    assert overview.total_sessions == 0
    assert overview.completed_sessions == 0
    assert overview.completion_rate == 0
    assert overview.overall_accuracy == 0
    assert overview.average_score == 0
    assert overview.median_score == 0
    assert overview.score_distribution.model_dump() == {"excellent": 0, "good": 0, "average": 0, "poor": 0}
    assert report.performance_trends.trend_direction == "stable"
    assert report.performance_trends.change == 0
    assert report.driver_analysis.total_drivers == 0
    assert report.driver_analysis.average_sessions_per_driver == 0
    assert report.question_analysis.total_questions == 0
    assert report.engagement_metrics.peak_engagement_day is None
    assert report.time_analysis.peak_hour is None
    assert report.time_analysis.peak_day is None


def test_median_of_odd_and_even_score_lists():
    odd = [make_session(1, "2024-01-01", c, 5) for c in (2, 3, 4)]
    even = [make_session(1, "2024-01-01", c, 5) for c in (2, 3)]

    assert calculate_overview(odd, []).median_score == 60
    assert calculate_overview(even, []).median_score == 50


def test_overview_counts_rates_and_distribution():
    sessions = [
        make_session(1, "2024-01-01", 10, 10),
        make_session(1, "2024-01-02", 9, 10),
        make_session(2, "2024-01-01", 7, 10),
        make_session(2, "2024-01-02", 5, 10),
        make_session(3, "2024-01-01", 4, 10),
        make_session(3, "2024-01-02", 1, 2, completed=False),
    ]
    responses = [make_response(sessions[0].id, 1, 1, True) for _ in range(3)] + [
        make_response(sessions[0].id, 2, 0, False)
    ]

    overview = calculate_overview(sessions, responses)

    assert overview.total_sessions == 6
    assert overview.completed_sessions == 5
    assert overview.completion_rate == 83.33
    assert overview.unique_drivers == 3
    assert overview.total_questions_answered == 4
    assert overview.total_correct_answers == 3
    assert overview.overall_accuracy == 75.0
    assert overview.average_score == 70.0
    assert overview.score_distribution.model_dump() == {"excellent": 2, "good": 1, "average": 1, "poor": 1}
    assert sum(overview.score_distribution.model_dump().values()) == overview.completed_sessions
    assert "83.33%" in overview.explanation
    assert "75.0%" in overview.explanation


def test_trend_improving_over_four_days():
    sessions = [
        make_session(1, "2024-01-03", 9, 10),
        make_session(1, "2024-01-01", 5, 10),
        make_session(1, "2024-01-04", 9, 10),
        make_session(1, "2024-01-02", 5, 10),
    ]

    trends = calculate_performance_trends(sessions)

    assert [d.date.isoformat() for d in trends.daily_trends] == [
        "2024-01-01",
        "2024-01-02",
        "2024-01-03",
        "2024-01-04",
    ]
    assert trends.first_half_average == 50
    assert trends.second_half_average == 90
    assert trends.change == 40
    assert trends.trend_direction == "improving"


def test_trend_declining_and_single_day_stable():
    declining = calculate_performance_trends(
        [make_session(1, "2024-01-01", 9, 10), make_session(1, "2024-01-02", 6, 10)]
    )
    single = calculate_performance_trends([make_session(1, "2024-01-01", 9, 10)])

    assert declining.trend_direction == "declining"
    assert declining.change == -30
    assert single.trend_direction == "stable"
    assert single.change == 0


def test_trend_odd_day_count_puts_extra_day_in_second_half():
    sessions = [
        make_session(1, "2024-01-01", 5, 10),
        make_session(1, "2024-01-02", 6, 10),
        make_session(1, "2024-01-03", 7, 10),
    ]

    trends = calculate_performance_trends(sessions)

    assert trends.first_half_average == 50
    assert trends.second_half_average == 65
    assert trends.trend_direction == "improving"


def test_trend_ignores_incomplete_sessions():
    sessions = [
        make_session(1, "2024-01-01", 8, 10),
        make_session(2, "2024-01-01", 2, 10),
        make_session(1, "2024-01-02", 0, 0, completed=False),
    ]

    trends = calculate_performance_trends(sessions)

    assert len(trends.daily_trends) == 1
    day = trends.daily_trends[0]
    assert day.session_count == 2
    assert day.average_score == 50
    assert day.total_questions == 20
    assert day.total_correct == 10


@pytest.mark.parametrize(
    "scores,expected",
    [
        ((85, 80, 90), "excellent"),
        ((30, 20, 50), "needs_improvement"),
        ((70, 70, 50), "average"),
        ((65, 60, 60), "good"),
        ((80, 75, 79.99), "good"),
        ((45, 39, 100), "needs_improvement"),
    ],
)
def test_categorize_performance_precedence(scores, expected):
    assert categorize_performance(*scores) == expected


def test_driver_segmentation_and_rankings_with_small_population():
    sessions = [
        make_session(1, "2024-01-01", 9, 10, streak=4),
        make_session(1, "2024-01-02", 8, 10, streak=4),
        make_session(2, "2024-01-01", 3, 10),
        make_session(2, "2024-01-05", 0, 0, completed=False),
        make_session(3, "2024-01-03", 6, 10),
    ]

    analysis = analyze_drivers(sessions)

    assert analysis.total_drivers == 3
    assert analysis.average_sessions_per_driver == 1.33
    assert [d.driver_id for d in analysis.top_performers] == [1, 3, 2]
    assert [d.driver_id for d in analysis.bottom_performers] == [2, 3, 1]
    assert analysis.most_active_drivers[0].driver_id == 1
    assert analysis.performance_distribution.model_dump() == {
        "excellent": 1,
        "good": 1,
        "average": 0,
        "needs_improvement": 1,
    }

    by_id = {d.driver_id: d for d in analysis.top_performers}
    assert by_id[1].average_score == 85
    assert by_id[1].accuracy == 85
    assert by_id[1].streak == 4
    assert by_id[1].performance_category == "excellent"
    assert by_id[2].completion_rate == 50
    assert by_id[2].total_sessions == 2
    assert by_id[2].last_quiz_date == date(2024, 1, 5)
    assert by_id[2].performance_category == "needs_improvement"


def test_driver_rankings_cap_at_ten():
    sessions = [make_session(driver_id, "2024-01-01", driver_id % 10, 10) for driver_id in range(1, 16)]

    analysis = analyze_drivers(sessions)

    assert len(analysis.top_performers) == 10
    assert len(analysis.bottom_performers) == 10
    assert analysis.top_performers[0].average_score == 90
    assert analysis.bottom_performers[0].average_score == 0


@pytest.mark.parametrize("accuracy,expected", [(70, "easy"), (100, "easy"), (40, "medium"), (39.99, "hard"), (0, "hard")])
def test_categorize_difficulty_boundaries(accuracy, expected):
    assert categorize_difficulty(accuracy) == expected


def test_most_common_selection_prefers_first_seen_on_tie():
    assert most_common_selection({2: 1, 0: 1}) == 2
    assert most_common_selection({2: 1, 0: 3}) == 0
    assert most_common_selection({}) is None


def test_question_analysis_language_filter_and_topics():
    responses = [
        make_response(1, 10, 1, True),
        make_response(2, 10, 1, True),
        make_response(3, 10, 2, False),
        make_response(1, 11, 0, False, topic=None),
        make_response(1, 12, 1, True, topic="Parking", language="de"),
    ]

    analysis = analyze_questions(responses, language="en")

    assert analysis.total_questions == 2
    assert analysis.difficulty_distribution.model_dump() == {"easy": 0, "medium": 1, "hard": 1}
    assert [q.question_id for q in analysis.easiest_questions] == [10, 11]
    assert [q.question_id for q in analysis.hardest_questions] == [11, 10]

    q10 = analysis.easiest_questions[0]
    assert q10.total_attempts == 3
    assert q10.incorrect_attempts == 1
    assert q10.accuracy == 66.67
    assert q10.option_selections == {1: 2, 2: 1}
    assert q10.most_common_mistake == 1

    assert [(t.topic, t.average_accuracy) for t in analysis.topic_analysis] == [
        ("Road signs", 66.67),
        ("Uncategorized", 0.0),
    ]


def test_question_analysis_without_language_keeps_all_questions():
    responses = [make_response(1, 10, 1, True), make_response(1, 12, 1, True, language="de")]

    analysis = analyze_questions(responses)

    assert analysis.total_questions == 2
    assert analysis.topic_analysis[0].total_questions == 2


def test_engagement_deduplicates_drivers_and_days():
    sessions = [
        make_session(1, "2024-01-01", 5, 10),
        make_session(1, "2024-01-02", 5, 10),
        make_session(1, "2024-01-02", 0, 0, completed=False),
        make_session(2, "2024-01-02", 5, 10),
    ]

    metrics = calculate_engagement_metrics(sessions)

    assert [(d.date.isoformat(), d.unique_drivers) for d in metrics.daily_engagement] == [
        ("2024-01-01", 1),
        ("2024-01-02", 2),
    ]
    assert metrics.daily_engagement[1].engagement_rate == 66.67
    assert metrics.peak_engagement_day.date == date(2024, 1, 2)
    assert metrics.average_days_active_per_driver == 1.5
    top = metrics.most_engaged_drivers[0]
    assert top.driver_id == 1
    assert top.days_active == 2
    assert top.total_sessions == 3
    assert top.average_sessions_per_day == 1.0


def test_peak_engagement_day_keeps_earliest_on_tie():
    sessions = [make_session(1, "2024-01-01", 5, 10), make_session(1, "2024-01-02", 5, 10)]

    assert calculate_engagement_metrics(sessions).peak_engagement_day.date == date(2024, 1, 1)


@pytest.mark.parametrize(
    "hour,expected",
    [(0, "Night"), (4, "Night"), (5, "Morning"), (11, "Morning"), (12, "Afternoon"), (16, "Afternoon"),
     (17, "Evening"), (20, "Evening"), (21, "Night"), (23, "Night")],
)
def test_time_period_labels(hour, expected):
    assert time_period(hour) == expected


def test_time_patterns_use_creation_timestamp():
    sessions = [
        make_session(1, "2024-01-01", 5, 10, created_at=datetime(2024, 1, 1, 8, 15)),
        make_session(2, "2024-01-01", 5, 10, created_at=datetime(2024, 1, 1, 8, 45)),
        make_session(3, "2024-01-06", 5, 10, created_at=datetime(2024, 1, 6, 22, 0)),
    ]

    analysis = analyze_time_patterns(sessions)

    assert analysis.hour_distribution == {8: 2, 22: 1}
    assert analysis.day_of_week_distribution == {"Monday": 2, "Saturday": 1}
    assert analysis.peak_hour.hour == 8
    assert analysis.peak_hour.sessions == 2
    assert analysis.peak_hour.time_period == "Morning"
    assert analysis.peak_day.day == "Monday"


def test_time_patterns_tie_goes_to_lowest_hour():
    sessions = [
        make_session(1, "2024-01-01", 5, 10, created_at=datetime(2024, 1, 1, 19, 0)),
        make_session(2, "2024-01-01", 5, 10, created_at=datetime(2024, 1, 1, 7, 0)),
    ]

    assert analyze_time_patterns(sessions).peak_hour.hour == 7


def test_time_patterns_shift_with_reporting_timezone():
    sessions = [make_session(1, "2024-01-01", 5, 10, created_at=datetime(2024, 1, 1, 23, 30))]

    utc = analyze_time_patterns(sessions)
    berlin = analyze_time_patterns(sessions, reporting_timezone="Europe/Berlin")

    assert utc.peak_hour.hour == 23
    assert utc.peak_day.day == "Monday"
    assert berlin.peak_hour.hour == 0
    assert berlin.peak_day.day == "Tuesday"
    assert berlin.reporting_timezone == "Europe/Berlin"


def test_low_accuracy_fires_only_accuracy_rules():
    sessions = [
        make_session(1, "2024-01-01", 11, 20),
        make_session(1, "2024-01-02", 11, 20),
        make_session(1, "2024-01-03", 11, 20),
    ]
    first = sessions[0].id
    responses = (
        [make_response(first, 1, 1, True) for _ in range(4)]
        + [make_response(first, 1, 0, False)]
        + [make_response(first, 2, 1, True) for _ in range(4)]
        + [make_response(first, 2, 3, False)]
        + [make_response(first, 3, 1, True) for _ in range(3)]
        + [make_response(first, 3, 2, False) for _ in range(7)]
    )

    report = run_comprehensive_analysis(sessions, responses)

    assert report.overview.overall_accuracy == 55
    assert [i.title for i in report.insights] == ["Low Overall Accuracy"]
    insight = report.insights[0]
    assert (insight.type, insight.category, insight.impact, insight.actionable) == (
        "warning",
        "Performance",
        "high",
        True,
    )
    assert [r.title for r in report.recommendations] == [
        "Improve Question Difficulty Balance",
        "Optimize Notification Timing",
    ]
    assert report.recommendations[0].priority == "high"


def test_struggling_population_fires_rules_in_table_order():
    sessions = [
        make_session(1, "2024-01-01", 9, 10),
        make_session(1, "2024-01-02", 2, 10),
        make_session(2, "2024-01-02", 0, 0, completed=False),
    ]
    responses = [make_response(sessions[0].id, 1, 0, False), make_response(sessions[0].id, 2, 0, False)]

    report = run_comprehensive_analysis(sessions, responses)

    assert [i.title for i in report.insights] == [
        "Low Overall Accuracy",
        "Low Completion Rate",
        "Declining Performance Trend",
        "High Proportion of Difficult Questions",
        "Low Driver Engagement",
    ]
    assert [r.priority for r in report.recommendations] == ["high", "high", "medium", "medium", "low"]
    assert report.recommendations[2].title == "Provide Additional Support to Struggling Drivers"
    assert report.recommendations[3].title == "Review and Improve Difficult Questions"


def test_high_accuracy_and_improving_trend_fire_success_insights():
    sessions = [
        make_session(1, "2024-01-01", 7, 10, created_at=datetime(2024, 1, 1, 18, 0)),
        make_session(1, "2024-01-02", 7, 10),
        make_session(1, "2024-01-03", 10, 10),
        make_session(1, "2024-01-04", 10, 10),
    ]
    responses = [make_response(sessions[0].id, 1, 1, True) for _ in range(9)] + [
        make_response(sessions[0].id, 1, 0, False)
    ]

    report = run_comprehensive_analysis(sessions, responses)

    assert [(i.type, i.title) for i in report.insights] == [
        ("success", "Excellent Overall Performance"),
        ("success", "Improving Performance Trend"),
    ]
    assert report.insights[1].description == report.performance_trends.explanation


def test_orphaned_responses_are_skipped(caplog):
    sessions = [make_session(1, "2024-01-01", 1, 1)]
    responses = [make_response(sessions[0].id, 1, 1, True), make_response(987654, 2, 0, False)]

    with caplog.at_level(logging.WARNING, logger="app.analysis"):
        report = run_comprehensive_analysis(sessions, responses)

    assert report.overview.total_questions_answered == 1
    assert report.question_analysis.total_questions == 1
    assert "Skipping 1 responses" in caplog.text


def test_report_is_deterministic_and_frozen():
    sessions = [
        make_session(1, "2024-01-01", 4, 5),
        make_session(2, "2024-01-02", 2, 5),
        make_session(3, "2024-01-02", 5, 5, completed=False),
    ]
    responses = [make_response(sessions[0].id, 1, 1, True), make_response(sessions[1].id, 1, 3, False)]

    first = run_comprehensive_analysis(sessions, responses)
    second = run_comprehensive_analysis(sessions, responses)

    assert first.model_dump_json() == second.model_dump_json()
    assert 0 <= first.overview.overall_accuracy <= 100
    with pytest.raises(ValidationError):
        first.insights = []
    with pytest.raises(ValidationError):
        first.overview.total_sessions = 1
    with pytest.raises(ValidationError):
        first.overview.score_distribution.good = 5
    with pytest.raises(AttributeError):
        first.driver_analysis.top_performers.clear()
    assert first.overview.total_sessions == 3


def test_average_score_explanation_matches_stored_float():
    sessions = [make_session(1, "2024-01-01", 8, 10), make_session(2, "2024-01-01", 8, 10)]

    overview = calculate_overview(sessions, [])

    assert overview.average_score == 80.0
    assert "average score of 80.0%" in overview.explanation
    assert "median score of 80.0%" in overview.explanation


def test_half_point_scores_flow_into_driver_averages():
    sessions = [make_session(1, "2024-01-01", 1, 8), make_session(1, "2024-01-02", 5, 8)]

    analysis = analyze_drivers(sessions)

    assert analysis.top_performers[0].scores == (13, 63)
    assert analysis.top_performers[0].average_score == 38.0


def test_difficult_question_action_item_counts_hardest_list():
    sessions = [make_session(1, "2024-01-01", 1, 3)]
    sid = sessions[0].id
    responses = [
        make_response(sid, 1, 0, False),
        make_response(sid, 2, 0, False),
        make_response(sid, 3, 1, True),
    ]

    report = run_comprehensive_analysis(sessions, responses)

    review = next(r for r in report.recommendations if r.title == "Review and Improve Difficult Questions")
    assert review.action_items[0] == "Review 3 questions with accuracy below 30%"
