"""Shared sample data for the test suite."""

from __future__ import annotations

from datetime import datetime, timezone

from rosterflow.models import (
    CohesionFields,
    FinancialFields,
    GpsFields,
    InjuryFields,
    PhysicalFields,
    PlayerRecord,
    TrainingFields,
    UpdateRequest,
    UpdateSource,
)


FIXED_TS = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_player(player_id: str = "p1", **overrides) -> PlayerRecord:
    """Player whose derived fields start at attendance 9.2, medical 8.8, value 147000, cohesion 9.1."""

    data = dict(
        player_id=player_id,
        name="Test Player",
        position="Flanker",
        training=TrainingFields(sessions_total=25, sessions_absent=2),
        injuries=InjuryFields(season_injury_count=2),
        financial=FinancialFields(base_value=67000.0),
        cohesion=CohesionFields(teamwork_rating=8.7),
        gps=GpsFields(sessions_recorded=1, total_distance=6800.0),
        physical=PhysicalFields(weight_kg=102.0, height_cm=188.0),
    )
    data.update(overrides)
    return PlayerRecord(**data)


def missed_appointment(player_id: str = "p1", **kwargs) -> UpdateRequest:
    return UpdateRequest(
        player_id=player_id,
        source=UpdateSource.MEDICAL_APPOINTMENT,
        changes={"status": "missed", "appointment_type": "routine_checkup"},
        actor=kwargs.pop("actor", "physio"),
        **kwargs,
    )


def gps_session(distance: float, player_id: str = "p1", **kwargs) -> UpdateRequest:
    return UpdateRequest(
        player_id=player_id,
        source=UpdateSource.GPS_SESSION,
        changes={"session_id": "s-1", "duration_minutes": 80, "total_distance": distance},
        **kwargs,
    )


def severe_injury(player_id: str = "p1", **kwargs) -> UpdateRequest:
    return UpdateRequest(
        player_id=player_id,
        source=UpdateSource.INJURY,
        changes={
            "injury_id": "inj-1",
            "injury_type": "hamstring",
            "severity": "severe",
            "status": "active",
            "notes": "Grade 2 strain",
        },
        **kwargs,
    )
