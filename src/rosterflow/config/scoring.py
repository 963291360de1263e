"""Default scoring functions referenced by the cascade rules.

Each function takes the current player snapshot and returns ``{target: value}``.
The weights are tuned against the club's historical before/after examples and
can be swapped by registering different rules.
"""

from __future__ import annotations

from typing import Any, Dict

from rosterflow.models import PlayerRecord


ABSENCE_PENALTY = 0.4
LATE_PENALTY = 0.1
MISSED_APPOINTMENT_PENALTY = 0.5
SEASON_INJURY_PENALTY = 0.6
OPEN_INJURY_PENALTY = {"minor": 1.0, "moderate": 2.0, "severe": 3.0}

ATTENDANCE_VALUE_WEIGHT = 3500.0
MEDICAL_VALUE_WEIGHT = 3500.0
FITNESS_VALUE_WEIGHT = 2000.0

COHESION_ATTENDANCE_WEIGHT = 0.8
COHESION_TEAMWORK_WEIGHT = 0.2

GPS_DISTANCE_THRESHOLD = 5000.0
# (minimum total distance in metres, fitness rating), highest band first
FITNESS_BANDS: tuple[tuple[float, float], ...] = (
    (7500.0, 9.2),
    (6000.0, 8.5),
    (5000.0, 7.4),
    (4000.0, 6.2),
    (0.0, 4.8),
)
FITNESS_WITHOUT_GPS = 7.0
FITNESS_ATTENTION_BELOW = 6.5
FITNESS_EXCELLENT_FROM = 8.0
WORKLOAD_LOAD_PER_POINT = 50.0

# position -> (benchmark weight kg, benchmark height cm)
POSITION_BENCHMARKS: dict[str, tuple[float, float]] = {
    "Prop": (115.0, 185.0),
    "Hooker": (105.0, 180.0),
    "Lock": (110.0, 200.0),
    "Flanker": (100.0, 190.0),
    "Number 8": (105.0, 195.0),
    "Scrum-half": (80.0, 175.0),
    "Fly-half": (85.0, 180.0),
    "Centre": (95.0, 185.0),
    "Wing": (85.0, 180.0),
    "Fullback": (90.0, 182.0),
}
DEFAULT_BENCHMARK_POSITION = "Centre"
PHYSICALITY_BASE = 5.0
PHYSICALITY_WEIGHT_FACTOR = 2.0
PHYSICALITY_HEIGHT_FACTOR = 1.0

SELECTION_HIGH_MEDICAL_BELOW = 6.0
SELECTION_MEDIUM_MEDICAL_BELOW = 7.5


def _clamp(value: float, lo: float = 0.0, hi: float = 10.0) -> float:
    return max(lo, min(hi, value))


def _score(value: float) -> float:
    return round(_clamp(value), 1)


def attendance_score(record: PlayerRecord) -> Dict[str, Any]:
    score = (
        10.0
        - ABSENCE_PENALTY * record.training.sessions_absent
        - LATE_PENALTY * record.training.sessions_late
        - MISSED_APPOINTMENT_PENALTY * record.medical.appointments_missed
    )
    return {"attendance_score": _score(score)}


def medical_score(record: PlayerRecord) -> Dict[str, Any]:
    score = 10.0
    score -= MISSED_APPOINTMENT_PENALTY * record.medical.appointments_missed
    score -= SEASON_INJURY_PENALTY * record.injuries.season_injury_count
    for severity in record.injuries.open_injuries.values():
        score -= OPEN_INJURY_PENALTY.get(severity, OPEN_INJURY_PENALTY["moderate"])
    return {"medical_score": _score(score)}


def medical_status(record: PlayerRecord) -> Dict[str, Any]:
    open_severities = set(record.injuries.open_injuries.values())
    if not open_severities:
        status = "cleared"
    elif "severe" in open_severities:
        status = "unavailable"
    else:
        status = "modified"
    return {"medical_status": status}


def gps_fitness(record: PlayerRecord) -> Dict[str, Any]:
    distance = record.gps.total_distance
    if distance is None:
        return {"fitness_rating": FITNESS_WITHOUT_GPS, "performance_flag": False}
    rating = FITNESS_BANDS[-1][1]
    for floor, band_rating in FITNESS_BANDS:
        if distance >= floor:
            rating = band_rating
            break
    return {
        "fitness_rating": rating,
        "performance_flag": distance < GPS_DISTANCE_THRESHOLD,
    }


def workload_score(record: PlayerRecord) -> Dict[str, Any]:
    load = record.gps.player_load
    if load is None:
        return {"workload_score": None}
    return {"workload_score": _score(load / WORKLOAD_LOAD_PER_POINT)}


def performance_score(record: PlayerRecord) -> Dict[str, Any]:
    ai = record.ai
    if ai.game_impact_rating is None:
        return {"performance_score": None}
    physicality = ai.physicality_rating if ai.physicality_rating is not None else 5.0
    skillset = ai.skillset_rating if ai.skillset_rating is not None else 5.0
    score = ai.game_impact_rating * 0.5 + physicality * 0.25 + skillset * 0.25
    return {"performance_score": _score(score)}


def physicality_index(record: PlayerRecord) -> Dict[str, Any]:
    """Body size against the benchmark for the player's position, on a 1-10 scale."""

    weight = record.physical.weight_kg
    if weight is None:
        return {"physicality_index": None}
    bench_weight, bench_height = POSITION_BENCHMARKS.get(
        record.position, POSITION_BENCHMARKS[DEFAULT_BENCHMARK_POSITION]
    )
    score = PHYSICALITY_BASE + (weight / bench_weight - 1.0) * PHYSICALITY_WEIGHT_FACTOR
    height = record.physical.height_cm
    if height is not None:
        score += (height / bench_height - 1.0) * PHYSICALITY_HEIGHT_FACTOR
    return {"physicality_index": round(_clamp(score, 1.0, 10.0), 1)}


def player_value(record: PlayerRecord) -> Dict[str, Any]:
    attendance = record.get_field("attendance_score") or 0.0
    medical = record.get_field("medical_score") or 0.0
    fitness = record.get_field("fitness_rating")
    if fitness is None:
        fitness = FITNESS_WITHOUT_GPS
    value = (
        record.financial.base_value
        + ATTENDANCE_VALUE_WEIGHT * attendance
        + MEDICAL_VALUE_WEIGHT * medical
        + FITNESS_VALUE_WEIGHT * fitness
    )
    return {"player_value": int(round(value))}


def cohesion_reliability(record: PlayerRecord) -> Dict[str, Any]:
    attendance = record.get_field("attendance_score") or 0.0
    score = (
        COHESION_ATTENDANCE_WEIGHT * attendance
        + COHESION_TEAMWORK_WEIGHT * record.cohesion.teamwork_rating
    )
    return {"cohesion_reliability": _score(score)}


def availability_status(record: PlayerRecord) -> Dict[str, Any]:
    status = record.get_field("medical_status")
    availability = {
        "unavailable": "unavailable",
        "modified": "limited",
    }.get(status, "available")
    return {"availability_status": availability}


def fitness_status(record: PlayerRecord) -> Dict[str, Any]:
    rating = record.get_field("fitness_rating")
    if rating is None:
        return {"fitness_status": None}
    if rating < FITNESS_ATTENTION_BELOW:
        status = "needs_attention"
    elif rating >= FITNESS_EXCELLENT_FROM:
        status = "excellent"
    else:
        status = "good"
    return {"fitness_status": status}


def selection_risk(record: PlayerRecord) -> Dict[str, Any]:
    status = record.get_field("medical_status")
    score = record.get_field("medical_score")
    flagged = bool(record.get_field("performance_flag"))
    if status == "unavailable" or (score is not None and score < SELECTION_HIGH_MEDICAL_BELOW):
        risk = "high"
    elif status == "modified" or flagged or (score is not None and score < SELECTION_MEDIUM_MEDICAL_BELOW):
        risk = "medium"
    else:
        risk = "low"
    return {"selection_risk": risk}


def medical_review_required(record: PlayerRecord) -> Dict[str, Any]:
    flagged = bool(record.get_field("performance_flag"))
    unavailable = record.get_field("medical_status") == "unavailable"
    return {"medical_review_required": flagged or unavailable}
