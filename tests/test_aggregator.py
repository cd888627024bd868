import threading
import time

import pytest

from modules.link_watch.lib.aggregator import ResultMap, scrape
from modules.link_watch.lib.fetcher import FetchError
from modules.link_watch.lib.models import Element, SiteSpec


def _spec(url, *terms, selector="a"):
    return SiteSpec(address=url, selector=selector, keywords=frozenset(terms))


def test_site_spec_matches_case_insensitively():
    spec = _spec("http://a/", "Carnaval")
    assert spec.matches("CARNAVAL 2024 schedule")
    assert spec.matches("pre-carnaval party")
    assert not spec.matches("Easter")
    assert not spec.matches("")


def test_scrape_merges_matches_from_all_sites(fake_fetcher_factory):
    fetcher = fake_fetcher_factory({
        "http://a/": [("Carnaval parade", "http://a/1"), ("Weather", "http://a/2")],
        "http://b/": [("Big SHOW tonight", "http://b/1"), ("Festival", "http://b/2")],
    })
    out = scrape([_spec("http://a/", "carnaval"), _spec("http://b/", "show")], fetcher=fetcher)

    assert out.results == {"http://a/1": "Carnaval parade", "http://b/1": "Big SHOW tonight"}
    assert out.failures == []
    assert out.found_by_site == {"http://a/": 1, "http://b/": 1}


def test_scrape_with_no_sites_returns_empty(fake_fetcher_factory):
    fetcher = fake_fetcher_factory({})
    out = scrape([], fetcher=fetcher)
    assert out.results == {}
    assert fetcher.visited == []


def test_scrape_runs_sites_concurrently():
    n = 4
    barrier = threading.Barrier(n, timeout=5)

    class BarrierFetcher:
        def visit(self, url, selector, on_element, kind="css"):
            # Only passes if all n visits are in flight together.
            barrier.wait()
            on_element(Element(text=f"carnaval {url}", href=f"{url}x"))
            return 1

    specs = [_spec(f"http://s{i}/", "carnaval") for i in range(n)]
    out = scrape(specs, fetcher=BarrierFetcher(), max_parallel=n)
    assert len(out.results) == n


def test_max_parallel_caps_in_flight_fetches():
    lock = threading.Lock()
    state = {"active": 0, "peak": 0}

    class CountingFetcher:
        def visit(self, url, selector, on_element, kind="css"):
            with lock:
                state["active"] += 1
                state["peak"] = max(state["peak"], state["active"])
            time.sleep(0.02)
            on_element(Element(text="carnaval", href=f"{url}x"))
            with lock:
                state["active"] -= 1
            return 1

    specs = [_spec(f"http://s{i}/", "carnaval") for i in range(10)]
    out = scrape(specs, fetcher=CountingFetcher(), max_parallel=3)

    assert len(out.results) == 10
    assert 1 <= state["peak"] <= 3


def test_scrape_passes_selector_kind_to_fetcher():
    kinds = {}

    class KindFetcher:
        def visit(self, url, selector, on_element, kind="css"):
            kinds[url] = (selector, kind)
            return 0

    specs = [
        SiteSpec(address="http://a/", selector="//a[@class='x']", keywords=frozenset({"k"}), kind="xpath"),
        _spec("http://b/", "k", selector="a.x"),
    ]
    scrape(specs, fetcher=KindFetcher())
    assert kinds == {"http://a/": ("//a[@class='x']", "xpath"), "http://b/": ("a.x", "css")}


def test_concurrent_writes_lose_nothing():
    results = ResultMap()

    def _writer(k):
        for i in range(500):
            results.put(f"http://w{k}/{i}", "t")

    threads = [threading.Thread(target=_writer, args=(k,)) for k in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(results) == 8 * 500


def test_single_site_failure_is_recorded_not_raised(fake_fetcher_factory):
    fetcher = fake_fetcher_factory({
        "http://a/": [("carnaval", "http://a/1")],
        "http://b/": FetchError("http://b/", "HTTP 503"),
    })
    out = scrape([_spec("http://a/", "carnaval"), _spec("http://b/", "carnaval")], fetcher=fetcher)

    assert out.results == {"http://a/1": "carnaval"}
    assert [f.address for f in out.failures] == ["http://b/"]
    assert "503" in out.failures[0].error


def test_fail_fast_raises_on_any_failure(fake_fetcher_factory):
    fetcher = fake_fetcher_factory({
        "http://a/": [("carnaval", "http://a/1")],
        "http://b/": FetchError("http://b/", "timeout"),
    })
    with pytest.raises(FetchError) as ei:
        scrape([_spec("http://a/", "carnaval"), _spec("http://b/", "carnaval")], fetcher=fetcher, fail_fast=True)
    assert ei.value.address == "http://b/"
    # every site was still attempted
    assert {u for u, _ in fetcher.visited} == {"http://a/", "http://b/"}


def test_all_sites_failing_raises(fake_fetcher_factory):
    fetcher = fake_fetcher_factory({"http://a/": RuntimeError("dns")})
    with pytest.raises(FetchError):
        scrape([_spec("http://a/", "carnaval")], fetcher=fetcher)


def test_duplicate_href_across_sites_keeps_one_entry(fake_fetcher_factory):
    fetcher = fake_fetcher_factory({
        "http://a/": [("carnaval one", "http://shared/1")],
        "http://b/": [("carnaval two", "http://shared/1")],
    })
    out = scrape([_spec("http://a/", "carnaval"), _spec("http://b/", "carnaval")], fetcher=fetcher)
    assert list(out.results) == ["http://shared/1"]
    assert out.results["http://shared/1"] in {"carnaval one", "carnaval two"}
