import orjson
import pytest

from rewards_runner.query_engine import QueryDiversityConfig, QueryDiversityEngine
from rewards_runner.session import SessionRunner, SessionSettings


class Account:
    """Server-side view of one rewards account"""

    def __init__(self, points=1000, pc=(0, 90), mobile=(0, 60), mobile_stuck=False, has_mobile=True):
        self.points = points
        self.pc = list(pc)
        self.mobile = list(mobile)
        self.mobile_stuck = mobile_stuck
        self.has_mobile = has_mobile

    def dashboard(self):
        counters = {"pcSearch": [{"pointProgress": self.pc[0], "pointProgressMax": self.pc[1]}]}
        if self.has_mobile:
            counters["mobileSearch"] = [
                {"pointProgress": self.mobile[0], "pointProgressMax": self.mobile[1]}
            ]
        return {"userStatus": {"availablePoints": self.points, "counters": counters}}

    def search(self, mobile):
        counter = self.mobile if mobile else self.pc
        if mobile and self.mobile_stuck:
            return
        if counter[0] < counter[1]:
            earned = min(3, counter[1] - counter[0])
            counter[0] += earned
            self.points += earned


class FakeDriver:
    def __init__(self, account, mobile, url="https://rewards.bing.com/", texts=None, scripts=None, fail_close=False):
        self.account = account
        self.mobile = mobile
        self.url = url
        self.texts = texts or {}
        self.scripts = scripts
        self.fail_close = fail_close
        self.closed = False
        self.reloads = 0

    def current_url(self):
        return self.url

    async def is_visible(self, locator, timeout):
        return "RewardsPortal" in locator and "rewards.bing.com" in self.url

    async def text_content(self, locator, timeout):
        for key, text in self.texts.items():
            if key in locator:
                return text
        return None

    async def evaluate_in_page(self, script):
        if self.scripts is not None:
            return self.scripts
        payload = orjson.dumps(self.account.dashboard()).decode()
        return ["window.analytics = {};", f"var dashboard = {payload};"]

    async def reload(self):
        self.reloads += 1

    async def close(self):
        self.closed = True
        if self.fail_close:
            raise RuntimeError("browser already gone")


class World:
    def __init__(self, account, **driver_kwargs):
        self.account = account
        self.driver_kwargs = driver_kwargs
        self.drivers = []
        self.searches = {"desktop": 0, "mobile": 0}

    async def browser_factory(self, email, mobile):
        driver = FakeDriver(self.account, mobile, **self.driver_kwargs)
        self.drivers.append(driver)
        return driver

    async def search_worker(self, driver, queries):
        for _ in queries:
            self.searches["mobile" if driver.mobile else "desktop"] += 1
            self.account.search(driver.mobile)

    def runner(self, **settings):
        async def stub_source():
            return [f"search topic {i}" for i in range(200)]

        engine = QueryDiversityEngine(
            QueryDiversityConfig(sources=["stub"], max_queries_per_source=200),
            sources={"stub": stub_source},
        )
        settings.setdefault("login_timeout", 1)
        return SessionRunner(
            self.browser_factory,
            self.search_worker,
            query_engine=engine,
            settings=SessionSettings(**settings),
        )


@pytest.mark.asyncio
async def test_full_session_collects_desktop_and_mobile_points():
    world = World(Account())
    report = await world.runner().run("user@example.com")

    assert world.searches == {"desktop": 30, "mobile": 20}
    assert report.initial_points == 1000
    assert report.final_points == 1150
    assert report.desktop_points == 90
    assert report.mobile_points == 60
    assert report.points_earned == 150
    assert report.errors == []
    assert report.banned is False
    assert [d.mobile for d in world.drivers] == [False, True]
    assert all(d.closed for d in world.drivers)


@pytest.mark.asyncio
async def test_nothing_to_earn_stops_after_desktop_check():
    world = World(Account(pc=(90, 90), mobile=(60, 60)))
    report = await world.runner().run("user@example.com")

    assert len(world.drivers) == 1
    assert world.searches == {"desktop": 0, "mobile": 0}
    assert report.points_earned == 0
    assert report.initial_points == report.final_points == 1000


@pytest.mark.asyncio
async def test_run_on_zero_points_still_runs_mobile_pass():
    world = World(Account(pc=(90, 90), mobile=(60, 60)))
    await world.runner(run_on_zero_points=True).run("user@example.com")

    assert [d.mobile for d in world.drivers] == [False, True]


@pytest.mark.asyncio
async def test_mobile_retry_recreates_session_each_attempt():
    world = World(Account(pc=(90, 90), mobile_stuck=True))
    report = await world.runner(mobile_retry_limit=2).run("user@example.com")

    mobile_drivers = [d for d in world.drivers if d.mobile]
    assert len(mobile_drivers) == 3
    assert all(d.closed for d in world.drivers)
    assert report.mobile_points == 0
    assert report.errors == []


@pytest.mark.asyncio
async def test_missing_mobile_counters_skip_mobile_pass():
    world = World(Account(has_mobile=False))
    report = await world.runner().run("user@example.com")

    assert world.searches["mobile"] == 0
    assert report.desktop_points == 90
    assert report.mobile_points == 0
    assert len(world.drivers) == 2


@pytest.mark.asyncio
async def test_blocked_account_is_reported_as_banned():
    world = World(
        Account(),
        url="https://login.live.com/err.srf",
        texts={"h1": "Your account has been locked"},
    )
    report = await world.runner().run("user@example.com")

    assert report.banned is True
    assert len(report.errors) == 1
    assert world.searches == {"desktop": 0, "mobile": 0}
    assert world.drivers[0].closed


@pytest.mark.asyncio
async def test_login_timeout_is_reported():
    world = World(Account(), url="https://login.live.com/unknown.srf")
    report = await world.runner(login_timeout=0).run("user@example.com")

    assert report.banned is False
    assert "Login did not complete" in report.errors[0]


@pytest.mark.asyncio
async def test_missing_dashboard_is_reported():
    world = World(Account(), scripts=["window.analytics = {};"])
    report = await world.runner().run("user@example.com")

    assert report.errors == ["Dashboard script not found on page"]
    assert world.drivers[0].reloads == 1


@pytest.mark.asyncio
async def test_close_failure_does_not_fail_session():
    world = World(Account(pc=(90, 90), mobile=(60, 60)), fail_close=True)
    report = await world.runner().run("user@example.com")

    assert report.errors == []
    assert world.drivers[0].closed


@pytest.mark.asyncio
async def test_run_all_and_report_payload():
    world = World(Account())
    reports = await world.runner(do_mobile_search=False).run_all(["a@example.com", "b@example.com"])

    assert [r.email for r in reports] == ["a@example.com", "b@example.com"]
    assert reports[0].to_dict() == {
        "email": "a@example.com",
        "pointsEarned": 90,
        "initialPoints": 1000,
        "finalPoints": 1090,
        "desktopPoints": 90,
        "mobilePoints": 0,
        "errors": [],
        "banned": False,
    }
    assert reports[1].points_earned == 0
