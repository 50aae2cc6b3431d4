"""Tests for bracket generation."""
import pytest

from puckdrop.exceptions import AuthorizationError, BracketConsistencyError, StateError, ValidationError
from puckdrop.models import BracketType, Match, MatchStatus, Slot, Team, TournamentFormat, TournamentStatus
from puckdrop.services import bracket_gen, lifecycle, locks
from puckdrop.services.bracket_gen import (
    check_forward_only,
    losers_round_sizes,
    next_power_of_2,
    plan_bracket,
    seed_positions,
    validate_seeding,
)

TEAM_COUNTS = [2, 3, 4, 5, 7, 8, 16]


def _teams(n):
    return [Team(id=100 + seed, tournament_id=1, name=f"Team {seed}", seed=seed) for seed in range(1, n + 1)]


def _linked_plan(n, bracket_format=TournamentFormat.DOUBLE_ELIMINATION):
    plan = plan_bracket(1, _teams(n), bracket_format)
    for i, m in enumerate(plan.matches, start=1):
        m.id = i
    plan.apply_links()
    return plan


def test_next_power_of_2():
    assert [next_power_of_2(n) for n in (2, 3, 4, 5, 8, 9, 16)] == [2, 4, 4, 8, 8, 16, 16]


def test_seed_positions():
    assert seed_positions(2) == [1, 2]
    assert seed_positions(4) == [1, 4, 2, 3]
    assert seed_positions(8) == [1, 8, 4, 5, 2, 7, 3, 6]


def test_seed_positions_pair_top_against_bottom():
    size = 16
    positions = seed_positions(size)
    for i in range(0, size, 2):
        assert positions[i] + positions[i + 1] == size + 1
    # 1 and 2 in opposite halves
    assert 1 in positions[: size // 2]
    assert 2 in positions[size // 2:]


def test_losers_round_sizes():
    assert losers_round_sizes(2) == []
    assert losers_round_sizes(4) == [1, 1]
    assert losers_round_sizes(8) == [2, 2, 1, 1]
    assert losers_round_sizes(16) == [4, 4, 2, 2, 1, 1]


def test_validate_seeding_rejects_missing_seed():
    teams = _teams(3)
    teams[1].seed = None
    with pytest.raises(ValidationError, match="missing seeds"):
        validate_seeding(teams)


def test_validate_seeding_rejects_duplicates_and_gaps():
    teams = _teams(3)
    teams[2].seed = 2
    with pytest.raises(ValidationError, match="Duplicate"):
        validate_seeding(teams)
    teams[2].seed = 4
    with pytest.raises(ValidationError, match="Missing seed: 3"):
        validate_seeding(teams)


@pytest.mark.parametrize("n", TEAM_COUNTS)
def test_plan_match_counts(n):
    size = next_power_of_2(n)
    plan = _linked_plan(n)
    winners = [m for m in plan.matches if m.bracket_type == BracketType.WINNERS]
    losers = [m for m in plan.matches if m.bracket_type == BracketType.LOSERS]
    finals = [m for m in plan.matches if m.bracket_type == BracketType.GRAND_FINAL]

    assert len(winners) == size - 1
    assert len([m for m in winners if not m.is_bye]) == n - 1
    assert len([m for m in winners if m.is_bye]) == size - n
    assert len(losers) == size - 2
    assert len([m for m in losers if not m.is_bye]) == n - 2
    assert len(finals) == 2


@pytest.mark.parametrize("n", TEAM_COUNTS)
def test_plan_single_elimination_counts(n):
    plan = _linked_plan(n, TournamentFormat.SINGLE_ELIMINATION)
    assert all(m.bracket_type == BracketType.WINNERS for m in plan.matches)
    assert len([m for m in plan.matches if not m.is_bye]) == n - 1
    assert all(m.loser_next_match_id is None for m in plan.matches)


@pytest.mark.parametrize("n", TEAM_COUNTS)
def test_plan_is_forward_only(n):
    plan = _linked_plan(n)
    check_forward_only(plan.matches)
    for m in plan.matches:
        if m.bracket_type == BracketType.GRAND_FINAL:
            assert m.next_match_id is None
        else:
            assert m.next_match_id is not None
        if m.bracket_type == BracketType.WINNERS:
            assert m.loser_next_match_id is not None


def test_check_forward_only_rejects_backward_pointer():
    plan = _linked_plan(4)
    final = next(m for m in plan.matches if m.bracket_position == "W-R2-M1")
    first = next(m for m in plan.matches if m.bracket_position == "W-R1-M1")
    final.next_match_id = first.id
    with pytest.raises(BracketConsistencyError, match="backwards"):
        check_forward_only(plan.matches)


def test_plan_byes_go_to_top_seeds_and_advance():
    plan = _linked_plan(5)
    byes = [m for m in plan.matches if m.bracket_type == BracketType.WINNERS and m.is_bye]
    # Seeds 1, 2, 3 (team ids 101-103) skip round 1
    assert sorted(m.winner_team_id for m in byes) == [101, 102, 103]
    for m in byes:
        assert m.status == MatchStatus.COMPLETED
        assert m.away_team_id is None
        assert m.home_score is None and m.away_score is None
    second_round = {m.bracket_position: m for m in plan.matches if m.bracket_position.startswith("W-R2")}
    assert second_round["W-R2-M1"].home_team_id == 101
    assert second_round["W-R2-M1"].away_team_id is None  # winner of 4 vs 5
    assert (second_round["W-R2-M2"].home_team_id, second_round["W-R2-M2"].away_team_id) == (102, 103)


def test_plan_losers_byes_for_three_teams():
    plan = _linked_plan(3)
    by_pos = {m.bracket_position: m for m in plan.matches}
    # Loser of the seed-1 bye never exists: L-R1-M1 only ever gets the 2 vs 3 loser
    assert by_pos["L-R1-M1"].is_bye
    assert by_pos["L-R1-M1"].status == MatchStatus.SCHEDULED
    assert not by_pos["L-R2-M1"].is_bye


def test_plan_dead_losers_match_is_cancelled():
    plan = _linked_plan(5)
    by_pos = {m.bracket_position: m for m in plan.matches}
    # Seeds 2 and 3 both had byes, so both feeders of L-R1-M2 are dead
    assert by_pos["L-R1-M2"].is_bye
    assert by_pos["L-R1-M2"].status == MatchStatus.CANCELLED
    assert by_pos["L-R1-M1"].status == MatchStatus.SCHEDULED


def test_plan_two_teams_double_elimination():
    plan = _linked_plan(2)
    by_pos = {m.bracket_position: m for m in plan.matches}
    final = by_pos["W-R1-M1"]
    gf1 = by_pos["GF1"]
    assert (final.next_match_id, final.next_match_slot) == (gf1.id, Slot.HOME)
    assert (final.loser_next_match_id, final.loser_next_match_slot) == (gf1.id, Slot.AWAY)
    assert by_pos["GF2"].is_active is False


def test_plan_losers_drop_in_reversed():
    plan = _linked_plan(8)
    by_id = {m.id: m for m in plan.matches}
    w2 = [m for m in plan.matches if m.bracket_position in ("W-R2-M1", "W-R2-M2")]
    targets = {m.bracket_position: by_id[m.loser_next_match_id].bracket_position for m in w2}
    assert targets == {"W-R2-M1": "L-R2-M2", "W-R2-M2": "L-R2-M1"}
    w_final = next(m for m in plan.matches if m.bracket_position == "W-R3-M1")
    assert by_id[w_final.loser_next_match_id].bracket_position == "L-R4-M1"


def test_single_elimination_labels():
    plan = _linked_plan(8, TournamentFormat.SINGLE_ELIMINATION)
    labels = [m.bracket_position for m in plan.matches]
    assert labels == ["QF1", "QF2", "QF3", "QF4", "SF1", "SF2", "Final"]
    plan = _linked_plan(16, TournamentFormat.SINGLE_ELIMINATION)
    assert plan.matches[0].bracket_position == "R1-M1"


@pytest.mark.asyncio
@pytest.mark.parametrize("n", TEAM_COUNTS)
async def test_generate_bracket_persists_graph(session, make_tournament, n):
    t = await make_tournament(n, start=False)
    matches = await bracket_gen.get_matches(session, t.id, include_inactive=True)
    size = next_power_of_2(n)
    winners = [m for m in matches if m.bracket_type == BracketType.WINNERS]
    losers = [m for m in matches if m.bracket_type == BracketType.LOSERS]
    assert len([m for m in winners if not m.is_bye]) == n - 1
    assert len(losers) == size - 2
    assert len([m for m in losers if not m.is_bye]) == n - 2
    check_forward_only(matches)
    assert [m.graph_order for m in matches] == sorted(m.graph_order for m in matches)


@pytest.mark.asyncio
async def test_get_matches_hides_inert_reset(session, make_tournament):
    t = await make_tournament(4, start=False)
    visible = await bracket_gen.get_matches(session, t.id)
    everything = await bracket_gen.get_matches(session, t.id, include_inactive=True)
    assert len(everything) == len(visible) + 1
    assert "GF2" not in [m.bracket_position for m in visible]
    gf2 = next(m for m in everything if m.bracket_position == "GF2")
    assert gf2.home_team_id is None and gf2.away_team_id is None
    assert gf2.status == MatchStatus.SCHEDULED


@pytest.mark.asyncio
async def test_single_elimination_has_no_grand_final(session, make_tournament):
    t = await make_tournament(4, TournamentFormat.SINGLE_ELIMINATION, start=False)
    matches = await bracket_gen.get_matches(session, t.id, include_inactive=True)
    assert [m.bracket_position for m in matches] == ["SF1", "SF2", "Final"]


def _signature(matches):
    by_id = {m.id: m for m in matches}

    def target(match_id):
        return by_id[match_id].graph_order if match_id else None

    return [
        (
            m.graph_order,
            m.bracket_position,
            m.is_bye,
            m.status,
            m.is_active,
            m.home_team_id,
            m.away_team_id,
            m.winner_team_id,
            target(m.next_match_id),
            m.next_match_slot,
            target(m.loser_next_match_id),
            m.loser_next_match_slot,
        )
        for m in matches
    ]


@pytest.mark.asyncio
@pytest.mark.parametrize("n", [3, 5, 8])
async def test_clear_then_regenerate_is_identical(session, make_tournament, users, n):
    t = await make_tournament(n, start=False)
    tid = t.id
    before = _signature(await bracket_gen.get_matches(session, tid, include_inactive=True))

    await bracket_gen.clear_bracket(session, tid, users["admin"])
    assert await bracket_gen.get_matches(session, tid, include_inactive=True) == []

    await bracket_gen.generate_bracket(session, tid, users["admin"])
    after = _signature(await bracket_gen.get_matches(session, tid, include_inactive=True))
    assert after == before


@pytest.mark.asyncio
async def test_clear_forgets_match_locks(session, make_tournament, users):
    t = await make_tournament(4, start=False)
    tid = t.id
    match_ids = [m.id for m in await bracket_gen.get_matches(session, tid, include_inactive=True)]
    for match_id in match_ids:
        async with locks.match_lock(tid, match_id):
            pass
    assert set(match_ids) <= set(locks._match_locks)

    await bracket_gen.clear_bracket(session, tid, users["admin"])
    assert not set(match_ids) & set(locks._match_locks)


@pytest.mark.asyncio
async def test_generate_refuses_existing_bracket(make_tournament, session, users):
    t = await make_tournament(4, start=False)
    with pytest.raises(StateError, match="Clear the bracket"):
        await bracket_gen.generate_bracket(session, t.id, users["owner"])


@pytest.mark.asyncio
async def test_generate_refuses_started_tournament(make_tournament, session, users):
    t = await make_tournament(4)
    tid = t.id
    with pytest.raises(StateError):
        await bracket_gen.clear_bracket(session, tid, users["owner"])
    with pytest.raises(StateError):
        await bracket_gen.generate_bracket(session, tid, users["owner"])


@pytest.mark.asyncio
async def test_generate_requires_two_teams(make_tournament, session, users):
    t = await make_tournament(1, generate=False)
    with pytest.raises(StateError, match="at least 2 teams"):
        await bracket_gen.generate_bracket(session, t.id, users["owner"])


@pytest.mark.asyncio
async def test_generate_rejects_unseeded_team(make_tournament, session, users):
    t = await make_tournament(3, generate=False)
    tid = t.id
    await lifecycle.add_team(session, tid, "Walk-ins", None, users["owner"])
    with pytest.raises(ValidationError, match="missing seeds"):
        await bracket_gen.generate_bracket(session, tid, users["owner"])
    assert await bracket_gen.get_matches(session, tid, include_inactive=True) == []


@pytest.mark.asyncio
async def test_generate_requires_admin(make_tournament, session, users):
    t = await make_tournament(4, generate=False)
    tid = t.id
    with pytest.raises(AuthorizationError):
        await bracket_gen.generate_bracket(session, tid, users["scorekeeper"])
    with pytest.raises(AuthorizationError):
        await bracket_gen.generate_bracket(session, tid, users["outsider"])


@pytest.mark.asyncio
async def test_generate_allowed_in_draft(make_tournament, session, users):
    t = await make_tournament(4, generate=False)
    tid = t.id
    matches = await bracket_gen.generate_bracket(session, tid, users["admin"])
    assert len(matches) == 3 + 2 + 2
    tournament = await bracket_gen.get_tournament(session, tid)
    assert tournament.status == TournamentStatus.DRAFT


@pytest.mark.asyncio
async def test_generate_copies_venue(make_tournament, session):
    t = await make_tournament(2, start=False, venue="Rink A")
    matches = await bracket_gen.get_matches(session, t.id, include_inactive=True)
    assert {m.venue for m in matches} == {"Rink A"}


@pytest.mark.asyncio
async def test_clear_resets_manual_tie_ranks(make_tournament, session, users, seeds):
    from puckdrop.services import standings

    t = await make_tournament(4, start=False)
    tid = t.id
    by_seed = await seeds(tid)
    await standings.resolve_ties(session, tid, [by_seed[3], by_seed[4]], users["admin"])
    await bracket_gen.clear_bracket(session, tid, users["admin"])
    teams = await lifecycle.list_teams(session, tid)
    assert all(team.manual_tie_rank is None for team in teams)


@pytest.mark.asyncio
async def test_get_match_checks_tournament(make_tournament, session):
    from puckdrop.exceptions import NotFoundError

    t = await make_tournament(2, start=False)
    tid = t.id
    matches = await bracket_gen.get_matches(session, tid)
    assert (await bracket_gen.get_match(session, matches[0].id, tournament_id=tid)).id == matches[0].id
    with pytest.raises(NotFoundError):
        await bracket_gen.get_match(session, matches[0].id, tournament_id=tid + 1)
    with pytest.raises(NotFoundError):
        await bracket_gen.get_match(session, 99999)


def test_match_helpers():
    m = Match(home_team_id=1, away_team_id=2, winner_team_id=2, bracket_type=BracketType.LOSERS, round=3, match_number=1)
    assert m.loser_team_id == 1
    assert m.team_in_slot(Slot.AWAY) == 2
    assert m.has_team(1) and not m.has_team(3)
    assert m.graph_order == (1, 3, 1)
