from hostwatch.workflows.host_utils import is_valid_host, normalize_host
from hostwatch.workflows.patterns import extract_hosts, iter_candidates, scan_text


def _accepted(text):
    hosts = set()
    for candidate in iter_candidates(text):
        host = normalize_host(candidate)
        if host is not None and is_valid_host(host):
            hosts.add(host)
    return hosts


def test_scheme_urls_yield_their_host():
    text = "see https://api.example.com/v1/users?id=3 now"
    candidates = list(iter_candidates(text))
    assert "https://api.example.com" in candidates
    assert extract_hosts(text) == {"api.example.com"}


def test_quoted_literal_in_script():
    text = 'var endpoint = "cdn.example.net"; var other = \'static.example.org\';'
    assert extract_hosts(text) == {"cdn.example.net", "static.example.org"}


def test_url_encoded_slashes_yield_only_the_host():
    text = "next=https%3A%2F%2Flogin.example.org%2Fcallback"
    assert list(iter_candidates(text)) == ["login.example.org"]
    assert extract_hosts(text) == {"login.example.org"}


def test_trailing_sentence_dot_is_not_part_of_the_host():
    assert extract_hosts("Visit www.example.com. Then leave.") == {"www.example.com"}


def test_numeric_addresses_are_not_candidates():
    assert extract_hosts("connect to 10.0.0.1 or 192.168.1.1:8080") == set()


def test_uppercase_hosts_are_canonicalized():
    assert extract_hosts("HTTPS://API.EXAMPLE.COM/X") == {"api.example.com"}


def test_markup_blob_unions_all_families():
    html = (
        '<a href="https://a.example.com/x">a</a>'
        "<script>fetch('b.example.com')</script>"
        "<img src=//c.example.com/pixel>"
        "redirect=%2F%2Fd.example.com"
    )
    assert extract_hosts(html) == {"a.example.com", "b.example.com", "c.example.com", "d.example.com"}


def test_malformed_text_does_not_stop_the_scan():
    text = "%%%://[[[ ]]] http://[::1 \x00\x01 api.example.com ://"
    assert extract_hosts(text) == {"api.example.com"}


def test_empty_text_yields_nothing():
    assert extract_hosts("") == set()
    assert list(iter_candidates("")) == []


def test_extract_hosts_matches_normalized_and_validated_candidates():
    samples = [
        "https://a.example.com/x 'b.example.org' c.example.net.",
        "%2F%2Fd.example.io and %2f%2fe.example.io",
        "mail admin@example.com or visit https://shop.example.com:8443/cart",
        "window.location.href = 'https://auth.example.com/login';",
    ]
    for text in samples:
        assert extract_hosts(text) == _accepted(text)


def test_host_scan_can_be_iterated_twice():
    scan = scan_text("https://a.example.com and b.example.com")
    assert list(scan) == list(scan)
    assert set(scan.hosts()) == {"a.example.com", "b.example.com"}
