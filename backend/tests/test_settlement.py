import pytest
from sqlalchemy import update

from tatanyisani import db
from tatanyisani.models import Challenge, Participant, Settlement, User
from tatanyisani.services.duels import (
    ChallengeNotActive,
    ChallengeStillRunning,
    NotAParticipant,
    challenges,
    ledger,
    scheduler,
    settlement,
)


def _user(uid):
    return db.session.get(User, uid)


@pytest.fixture()
def duel(app_ctx, make_user, clock):
    """Scenario A: A (100 LP) stakes 20, B (50 LP) joins."""
    a = make_user('mukondi', points=100)
    b = make_user('tshilidzi', points=50)
    created = challenges.create_challenge(_user(a), 20)
    challenges.attempt_join(created.id, _user(b))
    return created.id, a, b


def _score(challenge_id, user_id, times):
    for _ in range(times):
        challenges.record_score(challenge_id, user_id)


def test_scenario_a_balances_and_record(duel, clock):
    cid, a, b = duel
    challenge = challenges.get_challenge(cid)
    assert challenge.players == [a, b]
    assert challenge.pot == 40
    assert challenge.status == 'active'
    assert challenge.start_time == clock.now
    assert ledger.balance(a) == 80
    assert ledger.balance(b) == 30


def test_winner_takes_pot_loser_gets_nothing(duel, clock):
    cid, a, b = duel
    _score(cid, a, 3)
    _score(cid, b, 1)
    clock.advance(60)

    mine = settlement.settle(cid, a)
    theirs = settlement.settle(cid, b)

    assert (mine.outcome, mine.payout) == ('win', 40)
    assert (theirs.outcome, theirs.payout) == ('loss', 0)
    assert ledger.balance(a) == 120
    assert ledger.balance(b) == 30

    challenge = challenges.get_challenge(cid)
    assert challenge.status == 'completed'
    assert challenge.pot == 0
    assert challenge.winner_id == a
    assert challenge.completed_at == clock.now
    assert challenge.to_dict()['scores'] == {str(a): 30, str(b): 10}


def test_draw_refunds_each_player_their_stake(duel, clock):
    cid, a, b = duel
    _score(cid, a, 2)
    _score(cid, b, 2)
    clock.advance(61)

    # Loser-order independent: B's client happens to settle first
    assert settlement.settle(cid, b).payout == 20
    assert settlement.settle(cid, a).payout == 20

    assert ledger.balance(a) == 100
    assert ledger.balance(b) == 50
    assert challenges.get_challenge(cid).winner_id is None


def test_settling_twice_never_pays_twice(duel, clock):
    cid, a, b = duel
    _score(cid, a, 1)
    clock.advance(60)

    first = settlement.settle(cid, a)
    second = settlement.settle(cid, a)

    assert first.id == second.id
    assert second.payout == 40
    assert ledger.balance(a) == 120
    assert Settlement.query.filter_by(challenge_id=cid, user_id=a).count() == 1
    assert challenges.get_challenge(cid).status == 'completed'


def test_settle_before_time_is_refused(duel, clock):
    cid, a, b = duel
    clock.advance(59)
    with pytest.raises(ChallengeStillRunning):
        settlement.settle(cid, a)
    challenge = challenges.get_challenge(cid)
    assert challenge.status == 'active'
    assert challenge.pot == 40


def test_outsider_cannot_settle(duel, make_user, clock):
    cid, a, b = duel
    c = make_user('ndivhuwo', points=50)
    clock.advance(60)
    with pytest.raises(NotAParticipant):
        settlement.settle(cid, c)


def test_settle_without_opponent_is_a_no_op(app_ctx, make_user, clock):
    a = make_user('mukondi', points=100)
    created = challenges.create_challenge(_user(a), 20)
    clock.advance(120)

    assert settlement.settle(created.id, a) is None
    challenge = challenges.get_challenge(created.id)
    assert challenge.status == 'pending'
    assert challenge.pot == 20
    assert ledger.balance(a) == 80


def test_settle_missing_challenge_is_a_no_op(app_ctx, make_user):
    a = make_user('mukondi', points=100)
    assert settlement.settle('does-not-exist', a) is None
    assert ledger.balance(a) == 100


def test_scores_frozen_after_completion(duel, clock):
    cid, a, b = duel
    _score(cid, b, 1)
    clock.advance(60)
    settlement.settle(cid, a)
    # B's settlement must see the same final scores A's did
    assert settlement.settle(cid, b).outcome == 'win'
    assert settlement.settle(cid, a).outcome == 'loss'


def test_expire_challenge_pays_an_abandoned_duel(duel, clock):
    cid, a, b = duel
    _score(cid, a, 2)
    clock.advance(60)

    receipts = settlement.expire_challenge(cid)

    assert sorted((r.user_id, r.payout) for r in receipts) == sorted([(a, 40), (b, 0)])
    assert ledger.balance(a) == 120
    # A client that comes back later just gets its receipt
    assert settlement.settle(cid, a).payout == 40
    assert ledger.balance(a) == 120


def test_pot_matches_players_until_completed(duel, clock):
    cid, a, b = duel
    challenge = challenges.get_challenge(cid)
    assert challenge.pot == challenge.stake * len(challenge.players)
    clock.advance(60)
    settlement.expire_challenge(cid)
    assert challenges.get_challenge(cid).pot == 0


def test_outcome_for():
    assert settlement.outcome_for(30, 10, 20, 2) == ('win', 40)
    assert settlement.outcome_for(10, 30, 20, 2) == ('loss', 0)
    assert settlement.outcome_for(20, 20, 20, 2) == ('draw', 20)


def test_expiry_timer_settles_both_players(flask_app, make_user, clock, monkeypatch):
    flask_app.config['ENABLE_SCHEDULER_IN_TESTS'] = True
    # Sleeping advances the fake server clock instead of blocking
    monkeypatch.setattr(scheduler.time, 'sleep', clock.advance)
    a = make_user('mukondi', points=100)
    b = make_user('tshilidzi', points=50)

    with flask_app.app_context():
        created = challenges.create_challenge(_user(a), 20)
        cid = created.id
        challenges.attempt_join(cid, _user(b))

    with flask_app.app_context():
        challenge = db.session.get(Challenge, cid)
        assert challenge.status == 'completed'
        assert Settlement.query.filter_by(challenge_id=cid).count() == 2
        assert ledger.balance(a) == 100
        assert ledger.balance(b) == 50


def test_late_score_write_cannot_change_the_result(duel, clock):
    cid, a, b = duel
    _score(cid, a, 1)
    clock.advance(60)
    assert settlement.settle(cid, a).outcome == 'win'

    # A score write that slipped past every guard after the duel closed
    db.session.execute(
        update(Participant)
        .where(Participant.challenge_id == cid, Participant.user_id == b)
        .values(score=Participant.score + 20)
        .execution_options(synchronize_session=False)
    )
    db.session.commit()

    theirs = settlement.settle(cid, b)
    assert (theirs.outcome, theirs.payout) == ('loss', 0)
    paid = sum(r.payout for r in Settlement.query.filter_by(challenge_id=cid))
    assert paid == 40
    assert ledger.balance(a) == 120
    assert ledger.balance(b) == 30

    challenge = challenges.get_challenge(cid)
    assert challenge.winner_id == a
    assert challenge.to_dict()['scores'] == {str(a): 10, str(b): 0}


def test_scoring_after_completion_is_refused(duel, clock):
    cid, a, b = duel
    clock.advance(60)
    settlement.settle(cid, a)
    # Even with the clock wound back, the completed status blocks the write
    clock.now -= 30
    with pytest.raises(ChallengeNotActive):
        challenges.record_score(cid, b)
    assert challenges.get_challenge(cid).participant_for(b).score == 0


def test_restart_resumes_timers_for_active_duels(flask_app, make_user, balance_of, clock, monkeypatch):
    a = make_user('mukondi', points=100)
    b = make_user('tshilidzi', points=50)
    c = make_user('ndivhuwo', points=50)

    # Joined while no timer could be set, as if the process died right after
    with flask_app.app_context():
        cid = challenges.create_challenge(_user(a), 20).id
        challenges.attempt_join(cid, _user(b))
        _score(cid, b, 1)
        open_id = challenges.create_challenge(_user(c), 20).id

    flask_app.config['ENABLE_SCHEDULER_IN_TESTS'] = True
    monkeypatch.setattr(scheduler.time, 'sleep', clock.advance)
    assert scheduler.resume_expiry_timers(flask_app) == 1

    with flask_app.app_context():
        assert db.session.get(Challenge, cid).status == 'completed'
        assert db.session.get(Challenge, open_id).status == 'pending'
        assert Settlement.query.filter_by(challenge_id=cid).count() == 2
    assert balance_of(a) == 80
    assert balance_of(b) == 70


def test_app_startup_resumes_timers_outside_testing(monkeypatch):
    from tatanyisani import create_app

    class ServingConfig:
        TESTING = False
        SECRET_KEY = 'serving'
        SQLALCHEMY_DATABASE_URI = 'sqlite://'

    started = []
    monkeypatch.setattr(scheduler, 'resume_expiry_timers', started.append)
    application = create_app(ServingConfig)
    assert started == [application]
