"""Domain errors raised by the engine and reported to callers."""


class PodiumError(Exception):
    """Base class for all engine errors."""

    code = "podium_error"
    status_code = 400

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__doc__)
        self.message = message or (self.__class__.__doc__ or "").strip()


class BettingError(PodiumError):
    """Bet placement was rejected."""

    code = "betting_error"


class InvalidPickSet(BettingError):
    """A bet needs exactly 3 distinct competitors across 3 distinct positions."""

    code = "invalid_pick_set"


class CompetitorIneligible(BettingError):
    """Competitor is not eligible for betting."""

    code = "competitor_ineligible"

    def __init__(self, competitor_id: str, reason: str):
        super().__init__(f"Competitor {competitor_id} is not eligible ({reason})")
        self.competitor_id = competitor_id
        self.reason = reason


class WeekNotOpen(BettingError):
    """Betting is not open for this week."""

    code = "week_not_open"
    status_code = 409


class DuplicateBet(BettingError):
    """A bet already exists for this week."""

    code = "duplicate_bet"
    status_code = 409


class BoostAlreadyUsed(BettingError):
    """The monthly boost has already been used."""

    code = "boost_already_used"
    status_code = 409


class BetNotFound(BettingError):
    """Bet not found."""

    code = "bet_not_found"
    status_code = 404


class BettorNotFound(PodiumError):
    """Bettor not found."""

    code = "bettor_not_found"
    status_code = 404


class WeekNotFound(PodiumError):
    """Betting week not found."""

    code = "week_not_found"
    status_code = 404


class RaceIngestionError(PodiumError):
    """A race could not be rated. Nothing from it was applied."""

    code = "race_ingestion_failed"
    status_code = 422

    def __init__(self, race_id: str, reason: str):
        super().__init__(f"Race {race_id} rejected: {reason}")
        self.race_id = race_id
        self.reason = reason


class SettlementPreconditionError(PodiumError):
    """Settlement requires a finalized week."""

    code = "settlement_precondition"
    status_code = 409
