"""
Default HTML extractors for wiki pages.

These cover the common infobox and table layouts of the esports wiki.
Sources accept replacement callables, so a page family with a different
layout only needs its own extractor.
"""
import logging
import re
from datetime import date
from typing import Any

from bs4 import BeautifulSoup, Tag

from esports_ingest.services.sync.base import (
    clean_text,
    parse_date,
    parse_money,
    parse_placement,
    title_to_slug,
)

logger = logging.getLogger(__name__)

PLACEHOLDER_IMAGE_MARKERS = ("placeholder", "NoImage", "Logo_filler")


def absolute_url(href: str | None, origin: str) -> str | None:
    if not href:
        return None
    if href.startswith("//"):
        return f"https:{href}"
    if href.startswith("http"):
        return href
    return f"{origin.rstrip('/')}{href}"


def _soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "lxml")


# ==================== Infobox ====================

def parse_infobox(soup: BeautifulSoup) -> dict[str, Tag]:
    """
    Map lower-cased infobox labels to their value elements.

    Handles the div layout (``.infobox-description`` followed by a value div)
    and the older ``.infobox tr`` th/td layout.
    """
    fields: dict[str, Tag] = {}

    for label_el in soup.select(".infobox-description"):
        label = label_el.get_text(" ", strip=True).rstrip(":").strip().lower()
        value_el = label_el.find_next_sibling("div")
        if label and value_el is not None and label not in fields:
            fields[label] = value_el

    for row in soup.select(".infobox tr"):
        th, td = row.find("th"), row.find("td")
        if th is None or td is None:
            continue
        label = th.get_text(" ", strip=True).rstrip(":").strip().lower()
        if label and label not in fields:
            fields[label] = td

    return fields


def _field_text(fields: dict[str, Tag], *labels: str) -> str | None:
    for label in labels:
        el = fields.get(label)
        if el is not None:
            text = clean_text(el.get_text(" ", strip=True))
            if text:
                return text
    return None


def _infobox_header(soup: BeautifulSoup) -> str | None:
    header = soup.select_one(".infobox-header")
    if header is None:
        return None
    # The header carries edit/history links in a nested span
    for span in header.select(".infobox-buttons"):
        span.decompose()
    return clean_text(header.get_text(" ", strip=True))


def _infobox_image(soup: BeautifulSoup, origin: str) -> str | None:
    img = soup.select_one(".infobox-image img")
    if img is None:
        return None
    src = img.get("src") or img.get("data-src")
    if not src or any(marker in src for marker in PLACEHOLDER_IMAGE_MARKERS):
        return None
    return absolute_url(src, origin)


def _external_link(el: Tag | None) -> str | None:
    if el is None:
        return None
    for link in el.find_all("a", href=True):
        href = link["href"]
        if href.startswith("http") and "liquipedia.net" not in href:
            return href
    return None


def _year_or_date(text: str | None) -> date | None:
    parsed = parse_date(text)
    if parsed is not None or not text:
        return parsed
    match = re.search(r"\b(19|20)\d{2}\b", text)
    return date(int(match.group()), 1, 1) if match else None


# ==================== Page extractors ====================

def parse_organization_page(html: str, origin: str) -> dict[str, Any]:
    """Organization fields from a team page."""
    soup = _soup(html)
    fields = parse_infobox(soup)
    disbanded = _field_text(fields, "disbanded", "dissolved")
    return {
        "name": _infobox_header(soup),
        "location": _field_text(fields, "location", "headquarters"),
        "region": _field_text(fields, "region"),
        "founded": _year_or_date(_field_text(fields, "founded", "created", "established")),
        "website": _external_link(fields.get("website") or fields.get("links")),
        "logo_url": _infobox_image(soup, origin),
        "is_active": disbanded is None,
    }


def parse_player_page(html: str, origin: str) -> dict[str, Any]:
    """Player fields from a player page."""
    soup = _soup(html)
    fields = parse_infobox(soup)

    country = None
    nationality = fields.get("nationality") or fields.get("country")
    if nationality is not None:
        link = nationality.find("a")
        country = clean_text(link.get_text() if link else nationality.get_text(" ", strip=True))

    team = fields.get("team") or fields.get("current team")
    org_slug = None
    if team is not None:
        link = team.find("a")
        name = (link.get("title") if link else None) or team.get_text(" ", strip=True)
        if name and name.strip().lower() not in ("none", "-"):
            org_slug = title_to_slug(name)

    return {
        "current_ign": _infobox_header(soup),
        "real_name": _field_text(fields, "name", "romanized name"),
        "country": country,
        "birth_date": parse_date(_field_text(fields, "born", "birth date")),
        "role": _field_text(fields, "role", "roles"),
        "org_slug": org_slug,
        "platform_display_name": _field_text(fields, "epic name", "epic id", "in-game name"),
        "image_url": _infobox_image(soup, origin),
        "total_earnings": parse_money(_field_text(fields, "approx. total winnings", "total winnings")),
    }


def parse_results_table(html: str) -> list[dict[str, Any]]:
    """
    Prize placements from a player's results page.

    Columns are located by header text, so column order does not matter.
    Rows without a date or tournament are dropped.
    """
    soup = _soup(html)
    results: list[dict[str, Any]] = []

    for table in soup.select("table.wikitable"):
        header_row = table.find("tr")
        if header_row is None:
            continue
        headers = [th.get_text(" ", strip=True).lower() for th in header_row.find_all("th")]

        def column(*names: str) -> int | None:
            for i, header in enumerate(headers):
                if any(name in header for name in names):
                    return i
            return None

        date_col = column("date")
        place_col = column("place")
        tier_col = column("tier")
        tournament_col = column("tournament")
        prize_col = column("prize", "winnings")
        if date_col is None or tournament_col is None:
            continue

        for row in table.find_all("tr")[1:]:
            cells = row.find_all("td")
            if len(cells) <= max(date_col, tournament_col):
                continue

            def cell_text(index: int | None) -> str | None:
                if index is None or index >= len(cells):
                    return None
                return clean_text(cells[index].get_text(" ", strip=True))

            tournament_cell = cells[tournament_col]
            # Icon links come before the name link
            links = [a for a in tournament_cell.find_all("a") if clean_text(a.get_text())]
            tournament_name = clean_text(links[-1].get_text()) if links else cell_text(tournament_col)
            tournament_date = parse_date(cell_text(date_col))
            if not tournament_name or tournament_date is None:
                continue

            results.append({
                "tournament_name": tournament_name,
                "tournament_date": tournament_date,
                "tier": cell_text(tier_col),
                "placement": parse_placement(cell_text(place_col)),
                "prize_usd": parse_money(cell_text(prize_col)),
            })

    return results


def _transfer_org(cell: Tag | None) -> str | None:
    if cell is None:
        return None
    for link in cell.find_all("a"):
        href = link.get("href", "")
        if "index.php" in href or "Portal:" in href:
            continue
        name = clean_text(link.get("title") or link.get_text())
        if name:
            return None if name.lower() == "none" else name
    text = clean_text(cell.get_text(" ", strip=True))
    if not text or text in ("-", "—") or text.lower() == "none":
        return None
    return text


def _transfer_type(from_org: str | None, to_org: str | None, details: str | None) -> str:
    notes = (details or "").lower()
    if "retire" in notes:
        return "retire"
    if "release" in notes:
        return "release"
    if to_org and not from_org:
        return "join"
    if from_org and not to_org:
        return "leave"
    return "transfer"


def parse_transfer_rows(html: str, origin: str) -> list[dict[str, Any]]:
    """Rows of a transfers portal page (``div.divRow`` > ``div.divCell``)."""
    soup = _soup(html)
    transfers: list[dict[str, Any]] = []

    for row in soup.select("div.divRow"):
        if "divHeaderRow" in (row.get("class") or []):
            continue

        def cell(name: str) -> Tag | None:
            return row.select_one(f"div.divCell.{name}")

        date_cell = cell("Date")
        transfer_date = parse_date(clean_text(date_cell.get_text()) if date_cell else None)
        if transfer_date is None:
            continue

        name_cell = cell("Name")
        if name_cell is None:
            continue
        player_link = next(
            (a for a in name_cell.find_all("a", href=True) if clean_text(a.get_text())),
            None,
        )
        player_name = clean_text(player_link.get_text() if player_link else name_cell.get_text(" ", strip=True))
        if not player_name or len(player_name) > 50:
            continue

        from_org = _transfer_org(cell("OldTeam"))
        to_org = _transfer_org(cell("NewTeam"))
        if not from_org and not to_org:
            continue

        ref_cell = cell("Ref")
        details = clean_text(ref_cell.get_text(" ", strip=True)) if ref_cell else None
        ref_link = ref_cell.find("a", href=True) if ref_cell else None

        transfers.append({
            "player_name": player_name,
            "player_wiki_url": absolute_url(player_link["href"], origin) if player_link else None,
            "from_org": from_org,
            "to_org": to_org,
            "transfer_date": transfer_date,
            "transfer_type": _transfer_type(from_org, to_org, details),
            "details": details,
            "reference_url": absolute_url(ref_link["href"], origin) if ref_link else None,
        })

    logger.debug(f"Parsed {len(transfers)} transfer rows")
    return transfers
