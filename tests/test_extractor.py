"""Tests for alert extraction and change detection."""

from firewall_advisor.extractor import AlertExtractor, dedupe, extract, has_data, is_distinct
from firewall_advisor.models import ConnectionAlert

CURL_TEXTS = [
    "LuLu Alert",
    "curl is trying to connect to api.github.com",
    "Process ID:",
    "48213",
    "Process Path:",
    "/usr/bin/curl",
    "IP Address:",
    "140.82.112.6",
    "Port & Protocol:",
    "443 (TCP)",
    "Reverse DNS:",
    "lb-140-82-112-6-iad.github.com",
]


class TestDedupe:
    """Tests for dedupe()."""

    def test_keeps_first_seen_order(self):
        assert dedupe(["b", "a", "b", "c", "a"]) == ["b", "a", "c"]

    def test_drops_empty_strings(self):
        assert dedupe(["", "x", ""]) == ["x"]

    def test_exact_match_only(self):
        assert dedupe(["x", "X", "x "]) == ["x", "X", "x "]


class TestExtract:
    """Tests for extract()."""

    def test_full_alert(self):
        alert = extract(CURL_TEXTS)
        assert alert.process_id == "48213"
        assert alert.process_path == "/usr/bin/curl"
        assert alert.process_name == "curl"
        assert alert.ip_address == "140.82.112.6"
        assert alert.port == "443"
        assert alert.protocol == "TCP"
        assert alert.reverse_dns == "lb-140-82-112-6-iad.github.com"
        assert alert.raw_texts == tuple(CURL_TEXTS)

    def test_first_ip_wins(self):
        alert = extract(["10.0.0.1", "10.0.0.2"])
        assert alert.ip_address == "10.0.0.1"

    def test_last_port_wins(self):
        alert = extract(["443 (TCP)", "53 (UDP)"])
        assert alert.port == "53"
        assert alert.protocol == "UDP"

    def test_last_path_wins(self):
        alert = extract(["/usr/bin/curl", "/usr/local/bin/wget"])
        assert alert.process_path == "/usr/local/bin/wget"
        assert alert.process_name == "wget"

    def test_first_pid_wins(self):
        assert extract(["1234", "5678"]).process_id == "1234"

    def test_reverse_dns_trailing_dot_stripped(self):
        assert extract(["dns.google."]).reverse_dns == "dns.google"

    def test_url_becomes_process_args(self):
        assert extract(["https://example.com/update"]).process_args == (
            "https://example.com/update"
        )

    def test_protocol_defaults_to_tcp(self):
        assert extract(["1.2.3.4"]).protocol == "TCP"

    def test_empty_input(self):
        alert = extract([])
        assert alert.ip_address == ""
        assert alert.raw_texts == ()

    def test_duplicates_removed_from_raw_texts(self):
        alert = extract(["a", "a", "1.2.3.4"])
        assert alert.raw_texts == ("a", "1.2.3.4")


class TestHasData:
    """Tests for has_data()."""

    def test_ip_is_enough(self):
        assert has_data(ConnectionAlert(ip_address="1.2.3.4"))

    def test_many_raw_texts_are_enough(self):
        assert has_data(ConnectionAlert(raw_texts=tuple("abcdef")))

    def test_five_raw_texts_without_ip_is_not_enough(self):
        assert not has_data(ConnectionAlert(raw_texts=tuple("abcde")))


class TestIsDistinct:
    """Tests for is_distinct()."""

    def test_no_previous(self):
        assert is_distinct(ConnectionAlert(ip_address="1.2.3.4"), None)

    def test_same_identity_is_not_distinct(self):
        a = ConnectionAlert(ip_address="1.2.3.4", port="443", raw_texts=("x",))
        b = ConnectionAlert(ip_address="1.2.3.4", port="443", raw_texts=("y", "z"))
        assert not is_distinct(b, a)

    def test_changed_port_is_distinct(self):
        a = ConnectionAlert(ip_address="1.2.3.4", port="443")
        b = ConnectionAlert(ip_address="1.2.3.4", port="80")
        assert is_distinct(b, a)

    def test_changed_pid_is_distinct(self):
        a = ConnectionAlert(process_id="1000")
        b = ConnectionAlert(process_id="2000")
        assert is_distinct(b, a)


class TestAlertExtractor:
    """Tests for the stateful AlertExtractor."""

    def test_first_observation_emits(self):
        extractor = AlertExtractor()
        alert = extractor.observe(CURL_TEXTS)
        assert alert is not None
        assert extractor.last_alert is alert

    def test_same_alert_not_emitted_twice(self):
        extractor = AlertExtractor()
        extractor.observe(CURL_TEXTS)
        assert extractor.observe(CURL_TEXTS + ["Always"]) is None

    def test_new_destination_emitted(self):
        extractor = AlertExtractor()
        extractor.observe(CURL_TEXTS)
        texts = [t if t != "140.82.112.6" else "140.82.112.7" for t in CURL_TEXTS]
        assert extractor.observe(texts) is not None

    def test_sparse_window_ignored(self):
        extractor = AlertExtractor()
        assert extractor.observe(["LuLu Alert", "Loading"]) is None
        assert extractor.last_alert is None

    def test_reset_forgets_last_alert(self):
        extractor = AlertExtractor()
        extractor.observe(CURL_TEXTS)
        extractor.reset()
        assert extractor.observe(CURL_TEXTS) is not None
