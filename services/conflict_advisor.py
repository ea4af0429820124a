from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, timedelta
from typing import Dict, List, Optional

from models import LeaveRequest, RequestKind, RequestStatus, User

SEARCH_WINDOW_DAYS = 28
MAX_SUGGESTIONS = 5


@dataclass
class ConflictInfo:
    date: date
    conflict_level: str  # low / medium / high
    conflicting_requests: List[Dict[str, str]]
    team_size: int
    impact_score: float


@dataclass
class DateSuggestion:
    date: date
    score: int
    reason: str
    conflict_level: str  # none / low / medium / high
    available_team_members: int
    total_team_members: int


@dataclass
class ConflictAnalysis:
    original_dates: List[date]
    conflicts: List[ConflictInfo] = field(default_factory=list)
    suggestions: List[DateSuggestion] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)

    def to_dict(self):
        data = asdict(self)
        data["original_dates"] = [d.isoformat() for d in self.original_dates]
        for c in data["conflicts"]:
            c["date"] = c["date"].isoformat()
        for s in data["suggestions"]:
            s["date"] = s["date"].isoformat()
        return data


def _is_weekend(d: date) -> bool:
    return d.weekday() >= 5


def _pct(count, team_size) -> float:
    return (count / team_size) * 100 if team_size else 0.0


def day_conflict_level(percentage: float) -> str:
    if percentage >= 50:
        return "high"
    if percentage >= 30:
        return "medium"
    return "low"


def range_conflict_level(peak_percentage: float) -> str:
    if peak_percentage == 0:
        return "none"
    if peak_percentage < 20:
        return "low"
    if peak_percentage < 40:
        return "medium"
    return "high"


def impact_score(count, team_size, d: date) -> float:
    base = _pct(count, team_size)
    weekend = 0.5 if _is_weekend(d) else 1.0
    # Mondays and Fridays hurt more
    edge = 1.2 if d.weekday() in (0, 4) else 1.0
    return base * weekend * edge


def score_reason(avg_conflicts, peak_percentage, weekday_ratio) -> str:
    reasons = []
    if peak_percentage == 0:
        reasons.append("No team conflicts")
    elif peak_percentage < 20:
        reasons.append("Minimal team impact")
    elif peak_percentage < 40:
        reasons.append("Moderate team impact")
    else:
        reasons.append("High team impact")

    if weekday_ratio == 1:
        reasons.append("All business days")
    elif weekday_ratio > 0.7:
        reasons.append("Mostly business days")

    if avg_conflicts < 0.5:
        reasons.append("Good availability")
    elif avg_conflicts < 1:
        reasons.append("Fair availability")

    return ", ".join(reasons)


class ConflictAdvisor:
    """Team-availability analysis for a set of requested days. Read-only."""

    def analyze(self, requester, requested_dates, exclude_request_id: Optional[int] = None) -> ConflictAnalysis:
        dates = sorted(set(requested_dates))
        analysis = ConflictAnalysis(original_dates=dates)
        if not dates or not requester.manager_id:
            return analysis

        team_size = (
            User.query
            .filter(User.manager_id == requester.manager_id, User.is_active.is_(True))
            .count()
        )

        window_start = dates[0] - timedelta(days=SEARCH_WINDOW_DAYS)
        window_end = dates[-1] + timedelta(days=SEARCH_WINDOW_DAYS)
        requests = self._team_requests(requester.manager_id, window_start, window_end, exclude_request_id)

        for d in dates:
            info = self._analyze_day(d, requests, team_size)
            if info.conflict_level != "low":
                analysis.conflicts.append(info)

        if analysis.conflicts:
            analysis.suggestions = self._alternatives(dates, requests, team_size, window_start, window_end)
            analysis.recommendations = self._recommendations(analysis.conflicts, analysis.suggestions)

        return analysis

    @staticmethod
    def _team_requests(manager_id, start, end, exclude_request_id):
        q = (
            LeaveRequest.query
            .join(User, User.id == LeaveRequest.user_id)
            .filter(
                User.manager_id == manager_id,
                LeaveRequest.kind == RequestKind.LEAVE,
                LeaveRequest.status.in_([RequestStatus.APPROVED, RequestStatus.PENDING]),
                LeaveRequest.start_date <= end,
                LeaveRequest.end_date >= start,
            )
        )
        if exclude_request_id:
            q = q.filter(LeaveRequest.id != exclude_request_id)
        return q.all()

    @staticmethod
    def _on(d, requests):
        return [r for r in requests if r.start_date <= d <= r.end_date]

    def _analyze_day(self, d, requests, team_size) -> ConflictInfo:
        hits = self._on(d, requests)
        return ConflictInfo(
            date=d,
            conflict_level=day_conflict_level(_pct(len(hits), team_size)),
            conflicting_requests=[
                {
                    "employee_name": r.user.full_name,
                    "leave_type": r.leave_type.name if r.leave_type else r.kind,
                    "department": r.user.department or "Unknown",
                }
                for r in hits
            ],
            team_size=team_size,
            impact_score=impact_score(len(hits), team_size, d),
        )

    def _score_range(self, days, requests, team_size) -> DateSuggestion:
        counts = [len(self._on(d, requests)) for d in days]
        avg = sum(counts) / len(days) if days else 0
        peak = max(counts) if counts else 0
        peak_pct = _pct(peak, team_size)
        weekday_ratio = sum(1 for d in days if not _is_weekend(d)) / len(days) if days else 0

        score = 100 - avg * 15 - peak_pct * 2 + weekday_ratio * 10
        return DateSuggestion(
            date=days[0],
            score=round(max(0, score)),
            reason=score_reason(avg, peak_pct, weekday_ratio),
            conflict_level=range_conflict_level(peak_pct),
            available_team_members=team_size - peak,
            total_team_members=team_size,
        )

    def _alternatives(self, dates, requests, team_size, window_start, window_end) -> List[DateSuggestion]:
        duration = len(dates)
        original = set(dates)
        suggestions = []

        current = window_start
        last_start = window_end - timedelta(days=duration - 1)
        while current <= last_start:
            if not _is_weekend(current):
                days = [current + timedelta(days=i) for i in range(duration)]
                if not original.intersection(days):
                    s = self._score_range(days, requests, team_size)
                    if s.score > 0:
                        suggestions.append(s)
            current += timedelta(days=1)

        suggestions.sort(key=lambda s: s.score, reverse=True)
        return suggestions[:MAX_SUGGESTIONS]

    @staticmethod
    def _recommendations(conflicts, suggestions) -> List[str]:
        out = []
        high = [c for c in conflicts if c.conflict_level == "high"]
        medium = [c for c in conflicts if c.conflict_level == "medium"]

        if high:
            out.append(f"High conflict detected: {len(high)} date(s) have 50%+ team unavailability")
        if medium:
            out.append(f"Medium conflict: {len(medium)} date(s) have 30%+ team unavailability")

        if suggestions:
            best = suggestions[0]
            out.append(f"Best alternative: {best.date.strftime('%b %d')} ({best.reason.lower()})")
            excellent = [s for s in suggestions if s.score >= 80]
            if len(excellent) > 1:
                out.append(f"{len(excellent)} excellent alternatives available with minimal conflicts")
        elif conflicts:
            out.append("Consider extending search window or reducing leave duration for better alternatives")

        return out
