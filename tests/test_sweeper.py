from datetime import timedelta

from anonwall import sweeper
from anonwall.helpers import sweep_expired_messages
from anonwall.models import Message
from anonwall.sweeper import run_once


def test_sweep_deletes_only_expired_rows(app, make_message, clock):
    now = clock()
    past = make_message(expires_at=now - timedelta(hours=1))
    boundary = make_message(expires_at=now)
    deleted_and_expired = make_message(
        expires_at=now - timedelta(minutes=5), is_deleted=True
    )
    future = make_message(expires_at=now + timedelta(hours=1))
    forever = make_message(expires_at=None)
    soft_deleted_live = make_message(is_deleted=True)
    kept_ids = {future.id, forever.id, soft_deleted_live.id}
    expired_ids = {past.id, boundary.id, deleted_and_expired.id}

    assert sweep_expired_messages() == 3

    remaining = {m.id for m in Message.query.all()}
    assert remaining == kept_ids
    assert not expired_ids & remaining


def test_sweep_is_idempotent(app, make_message, clock):
    make_message(expires_at=clock() - timedelta(seconds=1))
    assert sweep_expired_messages() == 1
    assert sweep_expired_messages() == 0


def test_sweep_with_nothing_expired(app):
    assert sweep_expired_messages() == 0


def test_sweep_follows_clock(app, make_message, clock):
    make_message()
    assert sweep_expired_messages() == 0
    clock.advance(hours=24)
    assert sweep_expired_messages() == 1


def test_run_once_reports_count(app, make_message, clock, capsys):
    make_message(expires_at=clock() - timedelta(hours=2))
    make_message(expires_at=clock() - timedelta(hours=3))
    assert run_once(app) == 2
    assert "Cleaned up 2 expired message(s)." in capsys.readouterr().out


def test_sidecar_exits_when_sweeper_disabled(app, monkeypatch, capsys):
    monkeypatch.setenv("ANONWALL_SWEEPER", "0")
    monkeypatch.setattr(sweeper, "load_dotenv", lambda: None)
    monkeypatch.setattr(sweeper, "create_app", lambda: app)
    assert sweeper.main([]) == 1
    assert "ANONWALL_SWEEPER is not 1" in capsys.readouterr().err
