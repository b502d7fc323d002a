from datetime import date, datetime, timedelta, timezone

import httpx
import pytest
from sqlalchemy import select

from esports_ingest.models import Earning, Organization, Player, Tournament, Transfer
from esports_ingest.services.sync.earnings_sync import EarningsSyncSource, earning_id
from esports_ingest.services.sync.errors import FatalPipelineError
from esports_ingest.services.sync.organization_sync import OrganizationSyncSource
from esports_ingest.services.sync.player_sync import PlayerSyncSource
from esports_ingest.services.sync.tournament_sync import TournamentSyncSource
from esports_ingest.services.sync.transfer_sync import TransferSyncSource, transfer_id
from esports_ingest.utils.timestamps import as_utc, utcnow


def member(title: str, revised: str = "2025-05-01T10:00:00Z") -> dict:
    return {"ns": 0, "title": title, "revisions": [{"timestamp": revised}]}


def team_page(name: str, region: str | None = None) -> str:
    region_row = (
        f'<div><div class="infobox-description">Region:</div><div>{region}</div></div>' if region else ""
    )
    return f'<div class="infobox-header">{name}</div>{region_row}'


def player_page(ign: str, epic_name: str | None = None, team: str | None = None) -> str:
    rows = ""
    if epic_name:
        rows += f"<tr><th>Epic Name:</th><td>{epic_name}</td></tr>"
    if team:
        rows += f'<tr><th>Team:</th><td><a href="/fortnite/{team}" title="{team}">{team}</a></td></tr>'
    return f'<div class="infobox-header">{ign}</div><table class="infobox">{rows}</table>'


def results_page(*rows: tuple[str, str, str, str]) -> str:
    body = "".join(
        f"<tr><td>{d}</td><td>{place}</td><td>A-Tier</td><td>{name}</td><td>{prize}</td></tr>"
        for d, place, name, prize in rows
    )
    return (
        '<table class="wikitable"><tr><th>Date</th><th>Place</th><th>Tier</th>'
        f"<th>Tournament</th><th>Prize</th></tr>{body}</table>"
    )


# ==================== Organizations ====================

@pytest.mark.asyncio
class TestOrganizationSync:
    async def test_full_then_incremental_pass(self, test_session, make_wiki, orchestrator):
        categories = {"Category:Teams": [member("Team Liquid"), member("XSET")]}
        pages = {"Team Liquid": team_page("Team Liquid", "Europe"), "XSET": team_page("XSET")}
        source = OrganizationSyncSource(test_session, make_wiki(categories, pages), category="Category:Teams")

        first = await orchestrator.run(source)
        second = await orchestrator.run(source)

        assert (first.created, first.errors) == (2, ())
        assert (second.created, second.updated, second.skipped) == (0, 0, 2)

        org = (await test_session.execute(select(Organization).where(Organization.slug == "team-liquid"))).scalar_one()
        assert org.name == "Team Liquid"
        assert org.region == "Europe"
        assert org.wiki_url == "https://liquipedia.net/fortnite/Team_Liquid"
        assert as_utc(org.source_updated_at) == datetime(2025, 5, 1, 10, tzinfo=timezone.utc)

    async def test_new_revision_replaces_fields(self, test_session, make_wiki, orchestrator):
        source = OrganizationSyncSource(
            test_session,
            make_wiki({"Category:Teams": [member("XSET")]}, {"XSET": team_page("XSET", "North America")}),
            category="Category:Teams",
        )
        await orchestrator.run(source)

        source.wiki = make_wiki(
            {"Category:Teams": [member("XSET", "2025-06-01T00:00:00Z")]},
            {"XSET": team_page("XSET Gaming", "NA East")},
        )
        stats = await orchestrator.run(source)

        assert stats.updated == 1
        org = (await test_session.execute(select(Organization))).scalar_one()
        assert (org.name, org.region) == ("XSET Gaming", "NA East")

    async def test_missing_page_is_isolated(self, test_session, make_wiki, orchestrator):
        categories = {"Category:Teams": [member("Ghost Team"), member("XSET")]}
        source = OrganizationSyncSource(
            test_session, make_wiki(categories, {"XSET": team_page("XSET")}), category="Category:Teams"
        )

        stats = await orchestrator.run(source)

        assert stats.created == 1
        assert [e.item_id for e in stats.errors] == ["ghost-team"]

    async def test_pluggable_page_parser(self, test_session, make_wiki, orchestrator):
        source = OrganizationSyncSource(
            test_session,
            make_wiki({"Category:Teams": [member("XSET")]}, {"XSET": "<p>custom layout</p>"}),
            category="Category:Teams",
            parse_page=lambda html, origin: {"name": "XSET", "location": "Los Angeles"},
        )

        await orchestrator.run(source)

        org = (await test_session.execute(select(Organization))).scalar_one()
        assert org.location == "Los Angeles"


# ==================== Players ====================

@pytest.mark.asyncio
class TestPlayerSync:
    async def test_players_are_enriched_with_account_ids(self, test_session, make_wiki, make_platform, orchestrator):
        lookups = []

        def platform_handler(request: httpx.Request) -> httpx.Response:
            lookups.append(request.url.path)
            if request.url.path.endswith("/Bugha"):
                return httpx.Response(200, json={"id": "acc-bugha", "displayName": "Bugha"})
            return httpx.Response(404, json={"errorCode": "errors.com.epicgames.account.account_not_found"})

        wiki = make_wiki(
            {"Category:Players": [member("Bugha"), member("Clix")]},
            {
                "Bugha": player_page("Bugha", epic_name="Bugha", team="Dignitas"),
                "Clix": player_page("Clix", epic_name="Clix"),
            },
        )
        source = PlayerSyncSource(
            test_session, wiki, platform=make_platform(platform_handler), category="Category:Players"
        )

        stats = await orchestrator.run(source)

        assert (stats.created, stats.errors) == (2, ())
        players = {p.player_id: p for p in (await test_session.execute(select(Player))).scalars()}
        assert players["bugha"].platform_account_id == "acc-bugha"
        assert players["bugha"].org_slug == "dignitas"
        assert players["clix"].platform_account_id is None
        assert len(lookups) == 2

    async def test_known_account_is_not_looked_up_again(self, test_session, make_wiki, make_platform, orchestrator):
        test_session.add(Player(player_id="bugha", platform_account_id="acc-bugha"))
        await test_session.commit()
        lookups = []

        def platform_handler(request: httpx.Request) -> httpx.Response:
            lookups.append(request.url.path)
            return httpx.Response(200, json={"id": "other"})

        source = PlayerSyncSource(
            test_session,
            make_wiki({"Category:Players": [member("Bugha")]}, {"Bugha": player_page("Bugha", epic_name="Bugha")}),
            platform=make_platform(platform_handler),
            category="Category:Players",
        )

        stats = await orchestrator.run(source)

        assert stats.updated == 1
        assert lookups == []

    async def test_player_first_seen_elsewhere_is_matched_by_wiki_url(self, test_session, make_wiki, orchestrator):
        test_session.add(Player(player_id="kyle-giersdorf", wiki_url="https://liquipedia.net/fortnite/Bugha"))
        await test_session.commit()
        source = PlayerSyncSource(
            test_session,
            make_wiki({"Category:Players": [member("Bugha")]}, {"Bugha": player_page("Bugha")}),
            category="Category:Players",
        )

        stats = await orchestrator.run(source)

        assert stats.updated == 1
        players = (await test_session.execute(select(Player))).scalars().all()
        assert [(p.player_id, p.current_ign) for p in players] == [("kyle-giersdorf", "Bugha")]


# ==================== Tournaments ====================

def _iso(value: datetime) -> str:
    return value.strftime("%Y-%m-%dT%H:%M:%S.000Z")


@pytest.mark.asyncio
class TestTournamentSync:
    async def test_completed_events_become_final(self, test_session, make_platform, orchestrator):
        now = utcnow()
        finished = {
            "eventId": "epicgames_S27_FNCS_Major1_EU",
            "displayDataId": "FNCS Major 1",
            "longFormatTitle": "Trios",
            "eventWindows": [{"beginTime": _iso(now - timedelta(days=3)), "endTime": _iso(now - timedelta(days=2))}],
        }
        upcoming = {
            "eventId": "epicgames_S27_CashCup_NAE",
            "eventWindows": [{"beginTime": _iso(now + timedelta(days=1)), "endTime": _iso(now + timedelta(days=1, hours=3))}],
        }
        catalog = {"EU": [finished], "NAE": [upcoming]}

        def handler(request: httpx.Request) -> httpx.Response:
            path = request.url.path
            if "/download/" in path:
                return httpx.Response(200, json={"events": catalog[request.url.params["region"]]})
            event_id = path.split("/")[-2]
            event = finished if event_id == finished["eventId"] else upcoming
            return httpx.Response(200, json={"eventWindows": event["eventWindows"]})

        source = TournamentSyncSource(test_session, make_platform(handler), regions=("EU", "NAE"), now=lambda: now)

        first = await orchestrator.run(source)
        second = await orchestrator.run(source)

        assert (first.created, first.errors) == (2, ())
        assert second.skipped == 2

        rows = {t.tournament_id: t for t in (await test_session.execute(select(Tournament))).scalars()}
        major = rows["epicgames_S27_FNCS_Major1_EU"]
        assert major.name == "FNCS Major 1"
        assert major.region == "EU"
        assert major.format == "Trios"
        assert major.is_completed is True
        assert major.window_count == 1
        assert major.end_date == (now - timedelta(days=2)).date()
        assert rows["epicgames_S27_CashCup_NAE"].is_completed is False

    async def test_unreachable_event_catalog_aborts(self, test_session, make_platform, orchestrator):
        source = TournamentSyncSource(
            test_session, make_platform(lambda request: httpx.Response(503)), regions=("EU",)
        )

        with pytest.raises(FatalPipelineError):
            await orchestrator.run(source)


# ==================== Earnings ====================

@pytest.mark.asyncio
class TestEarningsSync:
    async def test_results_pages_become_earnings(self, test_session, make_wiki, orchestrator):
        test_session.add_all([
            Player(player_id="bugha", wiki_url="https://liquipedia.net/fortnite/Bugha", org_slug="dignitas"),
            Player(player_id="clix", wiki_url="https://liquipedia.net/fortnite/Clix", org_slug="xset"),
            Player(player_id="retired", wiki_url="https://liquipedia.net/fortnite/Retired", is_active=False),
            Player(player_id="no-wiki"),
        ])
        await test_session.commit()
        pages = {
            "Bugha/Results": results_page(
                ("2019-07-28", "1st", "Fortnite World Cup", "$3,000,000"),
                ("2019-07-28", "1st", "Fortnite World Cup", "$3,000,000"),
                ("2020-01-05", "5th", "Winter Royale", "$25,000"),
            ),
            "Clix/Results": "<p>No results</p>",
        }
        source = EarningsSyncSource(test_session, make_wiki(pages=pages))

        stats = await orchestrator.run(source)

        assert stats.created == 2
        assert [e.item_id for e in stats.errors] == ["clix"]
        earnings = (await test_session.execute(select(Earning).order_by(Earning.tournament_date))).scalars().all()
        assert [e.earning_id for e in earnings] == [
            earning_id("bugha", "Fortnite World Cup", date(2019, 7, 28)),
            earning_id("bugha", "Winter Royale", date(2020, 1, 5)),
        ]
        assert earnings[0].earning_id == "bugha:fortnite-world-cup:2019-07-28"
        assert earnings[0].prize_usd == 3000000.0

        again = await orchestrator.run(source)
        assert again.skipped == 1

    async def test_org_scope_limits_catalog(self, test_session, make_wiki, orchestrator):
        test_session.add_all([
            Player(player_id="bugha", wiki_url="https://liquipedia.net/fortnite/Bugha", org_slug="dignitas"),
            Player(player_id="clix", wiki_url="https://liquipedia.net/fortnite/Clix", org_slug="xset"),
        ])
        await test_session.commit()
        pages = {"Clix/Results": results_page(("2023-02-01", "2nd", "FNCS", "$10,000"))}
        source = EarningsSyncSource(test_session, make_wiki(pages=pages), org_slug="xset")

        stats = await orchestrator.run(source)

        assert (stats.created, stats.errors) == (1, ())


# ==================== Transfers ====================

TRANSFERS_PAGE = """
<div class="divRow">
  <div class="divCell Date">2024-03-01</div>
  <div class="divCell Name"><a href="/fortnite/Bugha">Bugha</a></div>
  <div class="divCell OldTeam"><a href="/fortnite/Sentinels" title="Sentinels"></a></div>
  <div class="divCell NewTeam"><a href="/fortnite/Dignitas" title="Dignitas"></a></div>
</div>
<div class="divRow">
  <div class="divCell Date">2024-03-02</div>
  <div class="divCell Name"><a href="/fortnite/Clix">Clix</a></div>
  <div class="divCell OldTeam">None</div>
  <div class="divCell NewTeam"><a href="/fortnite/XSET" title="XSET"></a></div>
</div>
"""


@pytest.mark.asyncio
class TestTransferSync:
    async def test_known_transfers_are_never_refetched(self, test_session, make_wiki, orchestrator):
        source = TransferSyncSource(test_session, make_wiki(pages={"Portal:Transfers": TRANSFERS_PAGE}),
                                    page="Portal:Transfers")

        first = await orchestrator.run(source)
        second = await orchestrator.run(source)

        assert first.created == 2
        assert (second.created, second.updated, second.skipped) == (0, 0, 2)

        rows = {t.player_name: t for t in (await test_session.execute(select(Transfer))).scalars()}
        assert rows["Bugha"].player_id == "bugha"
        assert rows["Bugha"].transfer_id == transfer_id({
            "transfer_date": date(2024, 3, 1), "player_name": "Bugha", "from_org": "Sentinels", "to_org": "Dignitas",
        })
        assert rows["Clix"].transfer_type == "join"

    async def test_missing_portal_page_aborts(self, test_session, make_wiki, orchestrator):
        source = TransferSyncSource(test_session, make_wiki(), page="Portal:Transfers")

        with pytest.raises(FatalPipelineError):
            await orchestrator.run(source)
