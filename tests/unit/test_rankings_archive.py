"""Tests for competitor standings, monthly leaderboards and season archives."""

from datetime import date, datetime

import pytest
from sqlalchemy import func, select

from podium.models.betting import Bet, BetPick, BetStatus
from podium.models.season import SeasonArchive
from podium.rating.store import RatingStore
from podium.seasons.archive import SeasonService, month_bounds, monthly_rollover, previous_month
from podium.seasons.rankings import RankingPeriod, RankingService, period_start


async def add_bet(db_session, bet_id, user_id, week, status, points=0.0, perfect=False, boosted=False):
    bet = Bet(
        id=bet_id,
        user_id=user_id,
        week_id=week.id,
        placed_at=datetime.combine(week.start_date, datetime.min.time()),
        status=status.value,
        points_earned=points,
        is_perfect_podium=perfect,
        is_finalized=status in (BetStatus.WON, BetStatus.LOST),
    )
    bet.picks = [BetPick(competitor_id="a", position="first", odd_at_bet=2.0, has_boost=boosted)]
    db_session.add(bet)
    await db_session.commit()
    return bet


class TestCompetitorRankings:
    @pytest.mark.asyncio
    async def test_ordered_by_conservative_score(self, db_session, make_competitor):
        await make_competitor("steady", rating=1700, rd=50)  # 1600
        await make_competitor("flashy", rating=1900, rd=200)  # 1500
        await make_competitor("level", rating=1620, rd=60)  # 1500, lower rating than flashy
        await make_competitor("quiet", rating=2000, rd=50, recent_races=0)

        standings = await RankingService(db_session).rank_competitors(None, datetime(2026, 11, 9))

        assert [s.competitor_id for s in standings] == ["steady", "flashy", "level"]
        assert [s.rank for s in standings] == [1, 2, 3]
        assert standings[0].conservative_score == 1600
        assert standings[0].race_count == 2

    @pytest.mark.asyncio
    async def test_window_filters_races(self, db_session, make_competitor):
        await make_competitor("a")
        standings = await RankingService(db_session).rank_competitors(
            datetime(2026, 11, 9), datetime(2026, 11, 15, 20, 0)
        )
        assert standings == []

    @pytest.mark.asyncio
    async def test_ineligible_competitors_are_flagged(self, db_session, make_competitor):
        await make_competitor("rookie", lifetime=2)
        [standing] = await RankingService(db_session).get_competitor_rankings(
            RankingPeriod.MONTH, now=datetime(2026, 11, 20)
        )
        assert standing.ineligibility_reason == "calibrating"

    def test_period_start(self):
        now = datetime(2026, 11, 12, 15, 30)
        assert period_start(RankingPeriod.WEEK, now) == datetime(2026, 11, 9)
        assert period_start(RankingPeriod.MONTH, now) == datetime(2026, 11, 1)
        assert period_start(RankingPeriod.ALL, now) is None
        with pytest.raises(ValueError):
            period_start("year", now)


class TestMonthlyRankings:
    @pytest.mark.asyncio
    async def test_leaderboard_order_and_stats(self, db_session, make_competitor, make_bettor, make_week):
        await make_competitor("a")
        for user_id in ("alice", "bob", "carol", "dave"):
            await make_bettor(user_id)
        w46 = await make_week(date(2026, 11, 9))
        w47 = await make_week(date(2026, 11, 16))
        october = await make_week(date(2026, 10, 26))

        await add_bet(db_session, "bet_a1", "alice", w46, BetStatus.WON, 10.0, perfect=True)
        await add_bet(db_session, "bet_a2", "alice", w47, BetStatus.WON, 5.0, boosted=True)
        await add_bet(db_session, "bet_b1", "bob", w46, BetStatus.WON, 15.0)
        await add_bet(db_session, "bet_b2", "bob", w47, BetStatus.LOST)
        await add_bet(db_session, "bet_c1", "carol", w46, BetStatus.WON, 3.0)
        await add_bet(db_session, "bet_c2", "carol", october, BetStatus.WON, 50.0)
        await add_bet(db_session, "bet_d1", "dave", w46, BetStatus.CANCELLED)

        rankings = await RankingService(db_session).get_monthly_rankings(11, 2026)

        assert [r.user_id for r in rankings] == ["alice", "bob", "carol"]
        alice, bob, carol = rankings
        assert alice.total_points == 15.0
        assert alice.bets_won == 2
        assert alice.perfect_bets == 1
        assert alice.boosts_used == 1
        assert alice.win_rate == 1.0
        assert bob.win_rate == 0.5
        assert bob.points_behind == 0.0
        assert carol.total_points == 3.0
        assert carol.points_behind == 12.0
        assert carol.bets_placed == 1

    @pytest.mark.asyncio
    async def test_pending_bets_count_as_placed_only(self, db_session, make_competitor, make_bettor, make_week):
        await make_competitor("a")
        await make_bettor("alice")
        week = await make_week()
        await add_bet(db_session, "bet_1", "alice", week, BetStatus.PENDING, points=None)

        [alice] = await RankingService(db_session).get_monthly_rankings(11, 2026)

        assert alice.bets_placed == 1
        assert alice.total_points == 0.0
        assert alice.win_rate == 0.0


class TestSeasonArchive:
    def test_month_helpers(self):
        assert month_bounds(2026, 12) == (datetime(2026, 12, 1), datetime(2027, 1, 1))
        assert previous_month(date(2027, 1, 1)) == (2026, 12)

    @pytest.mark.asyncio
    async def test_archive_keeps_final_standings(self, db_session, make_competitor):
        await make_competitor("a", rating=1700, rd=60)
        await make_competitor("b", rating=1600, rd=60)
        await make_competitor("rookie", rating=1900, rd=80, lifetime=4)

        archive = await SeasonService(db_session).archive_month(2026, 11)

        assert archive.id == "season_2026_11"
        assert archive.season_name == "November 2026"
        assert archive.total_competitors == 3
        assert archive.total_races == 6
        rankings = {r.competitor_id: r for r in archive.competitor_rankings}
        assert rankings["rookie"].provisional is True
        assert rankings["rookie"].rank is None
        assert (rankings["a"].rank, rankings["b"].rank) == (1, 2)
        assert rankings["a"].final_rating == 1700

    @pytest.mark.asyncio
    async def test_archive_runs_once(self, db_session, make_competitor):
        await make_competitor("a")
        service = SeasonService(db_session)

        first = await service.archive_month(2026, 11)
        second = await service.archive_month(2026, 11)

        assert first.id == second.id
        assert await db_session.scalar(select(func.count(SeasonArchive.id))) == 1
        assert [a.id for a in await service.list_archives()] == ["season_2026_11"]


class TestMonthlyRollover:
    @pytest.mark.asyncio
    async def test_archive_then_reset_then_new_week(self, db_session, make_competitor):
        await make_competitor("a", rating=1700, rd=60)
        await make_competitor("b", rating=1300, rd=60)

        summary = await monthly_rollover(db_session, now=datetime(2026, 12, 1, 0, 0))

        assert summary["archived"] == "season_2026_11"
        assert summary["soft_reset_applied"] is True
        assert summary["competitors_reset"] == 2
        # 1 December is a Tuesday: the current week started on Monday 30 November
        assert summary["current_week"] == "2026-W49"

        archive = await SeasonService(db_session).get_archive(2026, 11)
        archived = {r.competitor_id: r.final_rating for r in archive.competitor_rankings}
        assert archived["a"] == 1700
        a = await RatingStore(db_session).get_competitor("a")
        assert a.rating == pytest.approx(1650)

    @pytest.mark.asyncio
    async def test_rollover_is_repeatable(self, db_session, make_competitor):
        await make_competitor("a", rating=1700, rd=60)
        now = datetime(2026, 12, 1, 0, 0)

        await monthly_rollover(db_session, now=now)
        summary = await monthly_rollover(db_session, now=now)

        assert summary["soft_reset_applied"] is False
        a = await RatingStore(db_session).get_competitor("a")
        assert a.rating == pytest.approx(1650)
