import threading

import pytest

from kioskmap.core import aggregator
from kioskmap.core.config import Settings
from kioskmap.models import SourceDescriptor

HEADER = "ID,Estado Kiosco,Paquete,Latitud,Longitud\n"

NORTH = SourceDescriptor("North", "1")
SOUTH = SourceDescriptor("South", "2")
WEST = SourceDescriptor("West", "3")


def _csv(*rows):
    return HEADER + "".join(",".join(row) + "\n" for row in rows)


def _fetcher(texts):
    def fetch(source):
        result = texts[source.display_name]
        if isinstance(result, Exception):
            raise result
        return result

    return fetch


def test_aggregate_merges_successful_sources_and_skips_failed(caplog):
    texts = {
        "North": _csv(("n1", "Abierto", "Norte", "-34.1", "-58.1"), ("n2", "", "Norte 2", "-34.2", "-58.2")),
        "South": None,
        "West": _csv(("w1", "Cerrado", "Oeste", "-34.3", "-58.3")),
    }

    with caplog.at_level("INFO"):
        places = aggregator.aggregate_places([NORTH, SOUTH, WEST], fetch=_fetcher(texts), max_workers=3)

    assert [place.id for place in places] == ["n1", "n2", "w1"]
    assert [place.sourced_from for place in places] == ["North", "North", "West"]
    assert "North: 2 places" in caplog.text
    assert "West: 1 places" in caplog.text
    assert "Total: 3 unique places from 2/3 sources" in caplog.text


def test_aggregate_dedupes_by_position_first_source_wins():
    texts = {
        "North": _csv(("n1", "Abierto", "Norte", "-34.1", "-58.1")),
        "South": _csv(("s1", "Cerrado", "Sur", "-34.1", "-58.1"), ("s2", "", "Sur 2", "-34.5", "-58.5")),
    }

    places = aggregator.aggregate_places([NORTH, SOUTH], fetch=_fetcher(texts), max_workers=2)

    assert [place.id for place in places] == ["n1", "s2"]
    positions = [place.position for place in places]
    assert len(positions) == len(set(positions))


def test_aggregate_dedupes_within_a_single_source():
    texts = {"North": _csv(("a", "", "A", "-34.1", "-58.1"), ("b", "", "B", "-34.1", "-58.1"))}

    places = aggregator.aggregate_places([NORTH], fetch=_fetcher(texts), max_workers=1)

    assert [place.id for place in places] == ["a"]


def test_aggregate_treats_unexpected_fetch_errors_as_failed_source(caplog):
    texts = {"North": RuntimeError("kaboom"), "South": _csv(("s1", "", "Sur", "-34.1", "-58.1"))}

    with caplog.at_level("WARNING"):
        places = aggregator.aggregate_places([NORTH, SOUTH], fetch=_fetcher(texts), max_workers=2)

    assert [place.id for place in places] == ["s1"]
    assert "kaboom" in caplog.text


def test_aggregate_raises_when_every_source_fails():
    texts = {"North": None, "South": RuntimeError("down")}

    with pytest.raises(aggregator.AllSourcesFailedError) as excinfo:
        aggregator.aggregate_places([NORTH, SOUTH], fetch=_fetcher(texts), max_workers=2)

    assert excinfo.value.failed == ["North", "South"]


def test_aggregate_with_source_that_yields_nothing_is_not_a_failure():
    texts = {"North": HEADER}
    assert aggregator.aggregate_places([NORTH], fetch=_fetcher(texts), max_workers=1) == []


def test_aggregate_waits_for_all_fetches():
    # Both fetches must be in flight at once before either returns.
    barrier = threading.Barrier(2, timeout=5)
    texts = {"North": _csv(("n1", "", "N", "-34.1", "-58.1")), "South": _csv(("s1", "", "S", "-34.2", "-58.2"))}

    def fetch(source):
        barrier.wait()
        return texts[source.display_name]

    places = aggregator.aggregate_places([NORTH, SOUTH], fetch=fetch, max_workers=2)

    assert {place.id for place in places} == {"n1", "s1"}


def test_aggregate_defaults_to_configured_sources(monkeypatch):
    settings = Settings(sheet_csv_base_url="https://sheets.test/?gid=", sources=(NORTH, SOUTH), max_workers=2)
    calls = []

    def fake_fetch(source, settings=None):
        calls.append((source.display_name, settings))
        return _csv((source.source_handle, "", source.display_name, "-34." + source.source_handle, "-58.1"))

    monkeypatch.setattr(aggregator, "fetch_source_text", fake_fetch)

    places = aggregator.aggregate_places(settings=settings)

    assert sorted(calls, key=lambda call: call[0]) == [("North", settings), ("South", settings)]
    assert [place.id for place in places] == ["1", "2"]


def test_aggregate_with_no_sources():
    assert aggregator.aggregate_places([], fetch=_fetcher({}), max_workers=1) == []


def test_partial_failure_logs_one_warning_per_failed_source(monkeypatch, caplog):
    from kioskmap.vendors import google_sheets

    settings = Settings(sheet_csv_base_url="https://sheets.test/?gid=", sources=(NORTH, SOUTH, WEST))
    bodies = {
        "1": (200, _csv(("n1", "", "N", "-34.1", "-58.1"))),
        "2": (503, "unavailable"),
        "3": (200, _csv(("w1", "", "W", "-34.3", "-58.3"))),
    }

    class Response:
        def __init__(self, status_code, text):
            self.status_code = status_code
            self.text = text
            self.encoding = None

    class Session:
        def get(self, url, timeout=None):
            return Response(*bodies[url.rsplit("=", 1)[1]])

    monkeypatch.setattr(google_sheets, "_SESSION", Session())

    with caplog.at_level("WARNING"):
        places = aggregator.aggregate_places(settings=settings)

    assert [place.id for place in places] == ["n1", "w1"]
    warnings = [record for record in caplog.records if record.levelname == "WARNING"]
    assert len(warnings) == 1
    assert "South" in warnings[0].getMessage()
