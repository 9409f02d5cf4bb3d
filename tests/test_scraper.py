# tests/test_scraper.py
import json

import requests

from modules.job_aggregator.lib.sources.llm_extractor import LlmExtractor
from modules.job_aggregator.lib.sources.page_fetcher import PageFetcher
from modules.job_aggregator.lib.sources.scraper import Scraper, ScraperSource

LONG_BODY = "<html><body><main><h2>Grants Officer</h2><p>" + ("Manage grant reporting. " * 10) + "</p></main></body></html>"


def _reply(title="Grants Officer", description="<p>Manage grants</p>", tags=("finance",)):
    return json.dumps({"title": title, "description": description, "organizationName": "Aid Org", "matchedTags": list(tags)})


def _scraper(client, chat, sleeps, **kwargs):
    return Scraper(PageFetcher(client), LlmExtractor(chat), sleep=sleeps.append, **kwargs)


def test_scrapes_sequentially_with_pause_between_items(fake_http, fake_response, fake_chat, niche):
    urls = [f"https://aid.example.org/jobs/{i}" for i in range(3)]
    client = fake_http({u: fake_response(200, text=LONG_BODY) for u in urls})
    sleeps = []

    outcome = _scraper(client, fake_chat(_reply()), sleeps, delay_ms=250).scrape(urls, niche)

    assert [c[1] for c in client.calls] == urls
    assert sleeps == [0.25, 0.25]
    assert len(outcome.results) == 3
    assert outcome.errors == []
    assert [r.job.apply_url for r in outcome.results] == urls
    assert len({r.job.source_id for r in outcome.results}) == 3


def test_each_failure_is_recorded_and_the_rest_continue(fake_http, fake_response, fake_chat, niche):
    short, broken, not_a_job, good = (f"https://aid.example.org/jobs/{n}" for n in ("short", "broken", "nojob", "good"))
    client = fake_http({
        short: fake_response(200, text="<p>tiny</p>"),
        broken: requests.ConnectionError("connection reset"),
        not_a_job: fake_response(200, text=LONG_BODY),
        good: fake_response(200, text=LONG_BODY),
    })
    chat = fake_chat(_reply(title=""), _reply())

    outcome = _scraper(client, chat, [], delay_ms=0).scrape([short, broken, not_a_job, good], niche)

    assert [r.job.apply_url for r in outcome.results] == [good]
    assert outcome.errors[0].startswith(f"{short}: page too short (")
    assert outcome.errors[1] == f"{broken}: connection reset"
    assert outcome.errors[2] == f"{not_a_job}: LLM could not extract a job posting"
    assert len(chat.prompts) == 2


def test_missing_description_falls_back_to_page_html(fake_http, fake_response, fake_chat, niche):
    url = "https://aid.example.org/jobs/1"
    client = fake_http({url: fake_response(200, text=LONG_BODY)})

    outcome = _scraper(client, fake_chat(_reply(description=None)), []).scrape([url], niche)

    assert "<h2>Grants Officer</h2>" in outcome.results[0].job.description


def test_llm_error_becomes_url_error(fake_http, fake_response, fake_chat, niche):
    url = "https://aid.example.org/jobs/1"
    client = fake_http({url: fake_response(200, text=LONG_BODY)})

    outcome = _scraper(client, fake_chat(RuntimeError("model overloaded")), []).scrape([url], niche)

    assert outcome.results == []
    assert outcome.errors == [f"{url}: model overloaded"]


def test_source_without_llm_skips(fake_http, make_niche, settings):
    niche = make_niche(scraper_urls=["https://aid.example.org/jobs/1"])
    client = fake_http({})
    assert ScraperSource(client, settings, llm=None).collect(niche) == []
    assert client.calls == []


def test_source_returns_jobs_and_tags(fake_http, fake_response, fake_chat, make_niche, settings):
    url = "https://aid.example.org/jobs/1"
    niche = make_niche(scraper_urls=[url, "https://aid.example.org/jobs/down"])
    client = fake_http({
        url: fake_response(200, text=LONG_BODY),
        "https://aid.example.org/jobs/down": fake_response(500, text="oops"),
    })

    [result] = ScraperSource(client, settings, llm=fake_chat(_reply())).collect(niche)

    assert result.source == "Scraper"
    assert not result.failed
    [job] = result.items
    assert result.tags == {job.source_id: ["finance"]}
    assert len(result.errors) == 1
    assert result.errors[0].startswith("https://aid.example.org/jobs/down: 500")
