"""
tests/test_healer.py — Unit tests for SelfHealer.
"""
import asyncio

from Executor import SelfHealer
from fakes import FakePage, FakePageSpec, FakeSite

URL = "https://app.test/"


def make_page(*selectors: str) -> FakePage:
    page = FakePage(FakeSite(pages={URL: FakePageSpec(selectors=set(selectors))}))
    page.url = URL
    return page


def heal(healer: SelfHealer, page: FakePage, locator: str, step_index: int = 0):
    return asyncio.run(
        healer.heal(page, locator, lambda loc: page.click(loc), test_id="t1", step_index=step_index)
    )


class TestHeal:
    def test_first_visible_alternative_wins(self):
        page = make_page(".submit", '[data-testid="submit"]')
        result = heal(SelfHealer(), page, "#submit")
        assert result.locator == ".submit"
        assert result.strategy == SelfHealer.FALLBACK
        assert result.confidence == SelfHealer.FALLBACK_CONFIDENCE
        assert page.clicked == [".submit"]
        assert page.probed == ['[name="submit"]', ".submit"]

    def test_no_visible_alternative(self):
        page = make_page()
        assert heal(SelfHealer(), page, "#submit") is None
        assert page.clicked == []

    def test_locator_without_alternatives(self):
        page = make_page("div")
        assert heal(SelfHealer(), page, "form > div:nth-child(2)") is None
        assert page.probed == []

    def test_action_failing_on_candidate(self):
        page = make_page('[name="q"]')
        healer = SelfHealer()

        async def broken_action(locator):
            await page.fill("#not-there", "x")

        result = asyncio.run(healer.heal(page, "#q", broken_action, test_id="t1", step_index=0))
        assert result is None
        assert healer.statistics()["successful_heals"] == 0

    def test_time_budget_exhausted(self):
        page = make_page('[name="submit"]')
        result = heal(SelfHealer(max_healing_time=-1), page, "#submit")
        assert result is None
        assert page.probed == []


class TestHistory:
    def test_remembered_heal_is_tried_first(self):
        healer = SelfHealer()
        heal(healer, make_page('[data-testid="go"]'), "#go")

        page = make_page('[name="go"]', '[data-testid="go"]')
        result = heal(healer, page, "#go")
        assert result.locator == '[data-testid="go"]'
        assert result.strategy == SelfHealer.HISTORICAL
        assert result.confidence == SelfHealer.FALLBACK_CONFIDENCE + 0.05
        assert page.probed == ['[data-testid="go"]']

    def test_stale_history_falls_back(self):
        healer = SelfHealer()
        heal(healer, make_page('[data-testid="go"]'), "#go")

        page = make_page(".go")
        result = heal(healer, page, "#go")
        assert result.locator == ".go"
        assert result.strategy == SelfHealer.FALLBACK
        assert page.probed == ['[data-testid="go"]', '[name="go"]', ".go"]

    def test_confidence_is_capped(self):
        healer = SelfHealer()
        for _ in range(10):
            result = heal(healer, make_page('[name="x"]'), "#x")
        assert result.confidence == 0.99

    def test_statistics(self):
        healer = SelfHealer()
        heal(healer, make_page('[name="a"]'), "#a")
        heal(healer, make_page('[name="a"]'), "#a")
        heal(healer, make_page("#b"), ".b")
        assert healer.statistics() == {
            "successful_heals": 3,
            "by_strategy": {"FALLBACK": 2, "HISTORICAL": 1},
        }

    def test_clear_history(self):
        healer = SelfHealer()
        heal(healer, make_page('[name="a"]'), "#a")
        healer.clear_history()
        assert heal(healer, make_page('[name="a"]'), "#a").strategy == SelfHealer.FALLBACK


class TestEvents:
    def test_event_emitted_on_success(self):
        events = []
        healer = SelfHealer(on_healing_event=events.append)
        heal(healer, make_page('[name="email"]'), "#email", step_index=3)
        assert len(events) == 1
        event = events[0]
        assert (event.test_case_id, event.step_index) == ("t1", 3)
        assert (event.failed_locator, event.healed_locator) == ("#email", '[name="email"]')
        assert event.auto_applied is False

    def test_no_event_on_failure(self):
        events = []
        heal(SelfHealer(on_healing_event=events.append), make_page(), "#email")
        assert events == []

    def test_async_sink_is_awaited(self):
        events = []

        async def sink(event):
            events.append(event)

        heal(SelfHealer(on_healing_event=sink), make_page('[name="email"]'), "#email")
        assert len(events) == 1

    def test_sink_error_does_not_fail_heal(self):
        def sink(event):
            raise RuntimeError("db down")

        result = heal(SelfHealer(on_healing_event=sink), make_page('[name="email"]'), "#email")
        assert result is not None


class TestDecision:
    def test_auto_apply_threshold(self):
        healer = SelfHealer()
        assert healer.should_auto_apply(0.9)
        assert not healer.should_auto_apply(0.89)

    def test_decision_bands(self):
        healer = SelfHealer()
        assert healer.decision(0.95) == "auto"
        assert healer.decision(0.75) == "suggest"
        assert healer.decision(0.7) == "suggest"
        assert healer.decision(0.5) == "reject"
