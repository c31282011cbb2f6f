from __future__ import annotations

import asyncio

from harvest_timer.harvest_client import TrackingApiError
from harvest_timer.models import ActiveTimerRecord, BoardUser, CardSnapshot, TimerStatus, TimerUser
from harvest_timer.resolver import Found, NotFound
from harvest_timer.timer_check import RunningTimerMatcher, timer_matches


class FakeClient:
    def __init__(self, timers: list[ActiveTimerRecord] | None = None, configured: bool = True):
        self.timers = timers or []
        self.configured = configured
        self.error: Exception | None = None
        self.calls: list[str | None] = []

    async def list_running_entries(self, user_id=None, timeout=5.0):
        self.calls.append(user_id)
        if self.error is not None:
            raise self.error
        return self.timers


class FakeResolver:
    def __init__(self, result=None):
        self.result = result or NotFound()
        self.calls: list[BoardUser] = []

    async def resolve(self, user: BoardUser):
        self.calls.append(user)
        return self.result


def _timer(client: str | None, project: str | None) -> ActiveTimerRecord:
    return ActiveTimerRecord(
        project_name=project,
        client_name=client,
        task_name="Design",
        user=TimerUser(id="U1", name="Ada"),
    )


def _card(name: str = "Website Redesign", label: str | None = "Acme", attachments=None) -> CardSnapshot:
    labels = [{"name": label}] if label else []
    return CardSnapshot(name=name, labels=labels, attachments=attachments or [])


USER = BoardUser(id="t1", username="ada", email="a@x.com")


def test_match_is_case_insensitive_on_both_fields():
    client = FakeClient([_timer("acme", "website redesign")])
    matcher = RunningTimerMatcher(client, FakeResolver())

    status = asyncio.run(matcher.check(_card()))

    assert status is TimerStatus.RUNNING_TEAMWIDE
    assert client.calls == [None]


def test_user_scoped_query_when_resolved():
    client = FakeClient([_timer("Acme", "Website Redesign")])
    resolver = FakeResolver(Found(account_id="U1", strategy="email"))
    matcher = RunningTimerMatcher(client, resolver)

    status = asyncio.run(matcher.check(_card(), USER))

    assert status is TimerStatus.RUNNING_FOR_USER
    assert client.calls == ["U1"]


def test_unresolved_user_degrades_to_team_wide():
    client = FakeClient([_timer("Acme", "Website Redesign")])
    resolver = FakeResolver(NotFound())
    matcher = RunningTimerMatcher(client, resolver)

    status = asyncio.run(matcher.check(_card(), USER))

    assert status is TimerStatus.RUNNING_TEAMWIDE
    assert client.calls == [None]
    assert resolver.calls == [USER]


def test_partial_matches_do_not_count():
    client = FakeClient([_timer("Acme", "Other Project"), _timer("Other Client", "Website Redesign")])
    matcher = RunningTimerMatcher(client, FakeResolver())

    assert asyncio.run(matcher.check(_card())) is TimerStatus.NONE


def test_timer_without_client_or_project_is_skipped():
    client = FakeClient([_timer(None, None), _timer("Acme", "Website Redesign")])
    matcher = RunningTimerMatcher(client, FakeResolver())

    assert asyncio.run(matcher.check(_card())) is TimerStatus.RUNNING_TEAMWIDE


def test_no_client_label_skips_network():
    client = FakeClient([_timer("Acme", "Website Redesign")])
    resolver = FakeResolver(Found(account_id="U1", strategy="email"))
    matcher = RunningTimerMatcher(client, resolver)

    status = asyncio.run(matcher.check(_card(label=None), USER))

    assert status is TimerStatus.NONE
    assert client.calls == []
    assert resolver.calls == []


def test_child_card_never_reports_running():
    client = FakeClient([_timer("Acme", "Esa Campaign"), _timer("Acme", "Draft copy")])
    card = _card(
        name="Draft copy",
        attachments=[{"url": "https://trello.com/c/abc123/659-esa-campaign"}],
    )
    matcher = RunningTimerMatcher(client, FakeResolver())

    assert asyncio.run(matcher.check(card, USER)) is TimerStatus.NONE
    assert client.calls == []


def test_child_with_unparsable_parent_matches_own_name():
    client = FakeClient([_timer("Acme", "Draft copy")])
    card = _card(name="Draft copy", attachments=[{"url": "https://trello.com/c/abc123/"}])
    matcher = RunningTimerMatcher(client, FakeResolver())

    assert asyncio.run(matcher.check(card)) is TimerStatus.RUNNING_TEAMWIDE


def test_missing_credentials_returns_none():
    client = FakeClient([_timer("Acme", "Website Redesign")], configured=False)
    matcher = RunningTimerMatcher(client, FakeResolver())

    assert asyncio.run(matcher.check(_card())) is TimerStatus.NONE
    assert client.calls == []


def test_api_failure_is_silent():
    client = FakeClient()
    client.error = TrackingApiError("timeout", "timed out")
    matcher = RunningTimerMatcher(client, FakeResolver())

    assert asyncio.run(matcher.check(_card())) is TimerStatus.NONE


def test_resolver_failure_is_silent():
    class BrokenResolver:
        async def resolve(self, user):
            raise RuntimeError("unexpected")

    matcher = RunningTimerMatcher(FakeClient([_timer("Acme", "Website Redesign")]), BrokenResolver())

    assert asyncio.run(matcher.check(_card(), USER)) is TimerStatus.NONE


def test_timer_matches_helper():
    assert timer_matches(_timer("ACME", "WEBSITE REDESIGN"), "acme", "website redesign")
    assert not timer_matches(_timer("ACME", None), "acme", "website redesign")


def test_find_user_running_timer_returns_first():
    first = _timer("Acme", "Website Redesign")
    client = FakeClient([first, _timer("Beta", "Other")])
    matcher = RunningTimerMatcher(client, FakeResolver(Found(account_id="U1", strategy="email")))

    assert asyncio.run(matcher.find_user_running_timer(USER)) == first
    assert client.calls == ["U1"]


def test_find_user_running_timer_unmapped_user():
    client = FakeClient([_timer("Acme", "Website Redesign")])
    matcher = RunningTimerMatcher(client, FakeResolver(NotFound()))

    assert asyncio.run(matcher.find_user_running_timer(USER)) is None
    assert client.calls == []


def test_find_user_running_timer_api_failure():
    client = FakeClient()
    client.error = TrackingApiError("http_status", "Harvest API returned 503")
    matcher = RunningTimerMatcher(client, FakeResolver(Found(account_id="U1", strategy="email")))

    assert asyncio.run(matcher.find_user_running_timer(USER)) is None


def test_badge_projection():
    assert TimerStatus.NONE.badge() is None
    assert TimerStatus.RUNNING_TEAMWIDE.badge() == {"text": "⏱️ Timer Running", "color": "green"}
