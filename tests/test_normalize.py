from site_trawler.normalize import normalize_url


def test_normalize_url_ignores_tracking_query() -> None:
    first = normalize_url("https://Example.com/path/?b=2&a=1&utm_source=x")
    second = normalize_url("https://example.com/path?a=1&b=2")
    assert first == second == "https://example.com/path?a=1&b=2"


def test_normalize_url_drops_fragment() -> None:
    assert normalize_url("https://example.com/item#comments") == "https://example.com/item"
