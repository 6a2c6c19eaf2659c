import asyncio
from datetime import datetime, timedelta, timezone

import httpx

from ingestion.apisports import APISportsAdapter
from ingestion.balldontlie import BallDontLieAdapter
from ingestion.newsapi import NewsAPIAdapter
from ingestion.reddit import RedditAdapter
from ingestion.youtube import YouTubeAdapter
from services.cost_ledger import CostLedger


def iso(dt: datetime) -> str:
    return dt.strftime("%Y-%m-%dT%H:%M:%SZ")


def hours_ago(hours: float) -> datetime:
    return datetime.now(timezone.utc) - timedelta(hours=hours)


def json_transport(payload, status_code: int = 200, seen=None):
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        return httpx.Response(status_code, json=payload)
    return httpx.MockTransport(handler)


def test_newsapi_parses_articles_and_skips_removed():
    payload = {
        "articles": [
            {
                "title": "Cowboys sign veteran linebacker",
                "description": "Dallas adds depth on defense.",
                "url": "https://nfl.com/cowboys-lb",
                "publishedAt": iso(hours_ago(3)),
                "source": {"name": "NFL.com"},
            },
            {"title": "[Removed]", "publishedAt": iso(hours_ago(1)), "url": "https://removed"},
            {"title": "Ancient history", "publishedAt": iso(hours_ago(24 * 30)), "url": "https://old"},
        ]
    }
    seen = []
    adapter = NewsAPIAdapter(api_key="key", transport=json_transport(payload, seen=seen))

    result = asyncio.run(adapter.fetch({"Cowboys"}))

    assert result.ok
    assert [item.title for item in result.items] == ["Cowboys sign veteran linebacker"]
    item = result.items[0]
    assert item.source_adapter == "newsapi"
    assert item.content_type == "news"
    assert item.source_name == "NFL.com"
    assert item.teams == frozenset({"Cowboys"})
    assert seen[0].headers["X-Api-Key"] == "key"
    assert "Cowboys" in seen[0].url.params["q"]


def test_newsapi_without_key_is_partial_failure():
    adapter = NewsAPIAdapter(api_key=None, transport=json_transport({}))

    result = asyncio.run(adapter.fetch(set()))

    assert not result.ok
    assert result.items == []
    assert result.error.cause == "SourceUnavailableError"


def test_http_error_is_partial_failure_and_call_is_still_billed(database):
    ledger = CostLedger(database)
    adapter = NewsAPIAdapter(api_key="key", ledger=ledger, transport=json_transport({}, status_code=500))

    result = asyncio.run(adapter.fetch(set(), user_id="u1"))
    records = asyncio.run(ledger.records_for_day())

    assert result.error.cause == "HTTPStatusError"
    assert len(records) == 1
    assert records[0].api == "newsapi"
    assert records[0].operation_type == "api_call"
    assert records[0].cost_estimate == NewsAPIAdapter.profile.cost_per_call
    assert records[0].user_id == "u1"


def test_reddit_reads_atom_feed():
    updated = iso(hours_ago(2))
    feed = f"""<?xml version="1.0" encoding="UTF-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>hot posts in r/nfl</title>
  <entry>
    <title>Game thread: Cowboys at Eagles</title>
    <link href="https://www.reddit.com/r/nfl/comments/abc/game_thread/"/>
    <updated>{updated}</updated>
    <summary type="html">&lt;p&gt;Kickoff at 8pm&lt;/p&gt;</summary>
  </entry>
</feed>"""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text=feed, headers={"content-type": "application/atom+xml"})

    adapter = RedditAdapter(subreddits=["nfl"], transport=httpx.MockTransport(handler))

    result = asyncio.run(adapter.fetch({"Cowboys"}))

    assert result.ok
    assert len(result.items) == 1
    item = result.items[0]
    assert item.content_type == "discussion"
    assert item.source_name == "r/nfl"
    assert "Kickoff at 8pm" in item.summary
    assert "<p>" not in item.summary
    assert item.teams == frozenset({"Cowboys"})


def test_reddit_fails_only_when_every_feed_fails():
    adapter = RedditAdapter(subreddits=["nfl", "nba"], transport=json_transport({}, status_code=503))

    result = asyncio.run(adapter.fetch(set()))

    assert result.error.cause == "SourceUnavailableError"


def test_balldontlie_skips_unplayed_games():
    played = hours_ago(20)
    payload = {
        "data": [
            {
                "id": 1,
                "date": iso(played),
                "season": 2025,
                "home_team": {"full_name": "Los Angeles Lakers"},
                "visitor_team": {"full_name": "Boston Celtics"},
                "home_team_score": 112,
                "visitor_team_score": 108,
            },
            {
                "id": 2,
                "date": iso(hours_ago(5)),
                "home_team": {"full_name": "Miami Heat"},
                "visitor_team": {"full_name": "New York Knicks"},
                "home_team_score": 0,
                "visitor_team_score": 0,
            },
        ]
    }
    adapter = BallDontLieAdapter(transport=json_transport(payload))

    result = asyncio.run(adapter.fetch(set()))

    assert [item.title for item in result.items] == ["Boston Celtics 108 - 112 Los Angeles Lakers"]
    assert "Los Angeles Lakers won by 4 points." in result.items[0].summary
    assert result.items[0].content_type == "stat"


def _fixture(fixture_id: int, status: str, played: datetime) -> dict:
    return {
        "fixture": {"id": fixture_id, "date": iso(played), "status": {"short": status}},
        "league": {"name": "Premier League"},
        "teams": {"home": {"name": "Arsenal"}, "away": {"name": "Chelsea"}},
        "goals": {"home": 2, "away": 1},
    }


def test_apisports_keeps_only_finished_fixtures():
    payload = {
        "errors": [],
        "response": [
            _fixture(1, "FT", hours_ago(4)),
            _fixture(2, "NS", hours_ago(1)),
            _fixture(3, "1H", hours_ago(1)),
        ],
    }
    adapter = APISportsAdapter(api_key="key", lookback_days=0, transport=json_transport(payload))

    result = asyncio.run(adapter.fetch(set()))

    assert [item.title for item in result.items] == ["Arsenal 2 - 1 Chelsea"]
    assert "Premier League" in result.items[0].summary


def test_apisports_error_payload_is_partial_failure():
    payload = {"errors": {"token": "Invalid API key"}, "response": []}
    adapter = APISportsAdapter(api_key="bad", lookback_days=0, transport=json_transport(payload))

    result = asyncio.run(adapter.fetch(set()))

    assert result.error.cause == "SourceUnavailableError"
    assert "Invalid API key" in result.error.message


def test_youtube_builds_watch_urls():
    payload = {
        "items": [
            {
                "id": {"videoId": "abc123"},
                "snippet": {
                    "title": "Cowboys vs Eagles highlights",
                    "description": "Full game recap",
                    "publishedAt": iso(hours_ago(6)),
                    "channelTitle": "NFL",
                },
            },
            {"id": {}, "snippet": {"title": "Playlist without video", "publishedAt": iso(hours_ago(1))}},
        ]
    }
    adapter = YouTubeAdapter(api_key="key", transport=json_transport(payload))

    result = asyncio.run(adapter.fetch({"Cowboys"}))

    assert len(result.items) == 1
    item = result.items[0]
    assert item.source_url == "https://www.youtube.com/watch?v=abc123"
    assert item.content_type == "highlight"
    assert item.source_name == "NFL"
