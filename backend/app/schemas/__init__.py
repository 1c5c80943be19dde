from .contests import BallotCreate, BallotOut, BallotResult, ContestOut, SubmissionScore, VotingStatusOut
from .notifications import NotificationOut
from .quests import (
    AttemptComplete,
    AttemptCompleteOut,
    AttemptOut,
    AttemptStart,
    AttemptStartOut,
    EligibilityOut,
    GeoPoint,
    RewardOut,
)
from .team_challenges import (
    ChallengeStatistics,
    ChallengeStatusUpdate,
    ContributionUpdate,
    ContributorOut,
    DeleteResult,
    TeamChallengeCreate,
    TeamChallengeOut,
)

__all__ = [
    "BallotCreate",
    "BallotOut",
    "BallotResult",
    "ContestOut",
    "SubmissionScore",
    "VotingStatusOut",
    "NotificationOut",
    "AttemptComplete",
    "AttemptCompleteOut",
    "AttemptOut",
    "AttemptStart",
    "AttemptStartOut",
    "EligibilityOut",
    "GeoPoint",
    "RewardOut",
    "ChallengeStatistics",
    "ChallengeStatusUpdate",
    "ContributionUpdate",
    "ContributorOut",
    "DeleteResult",
    "TeamChallengeCreate",
    "TeamChallengeOut",
]
