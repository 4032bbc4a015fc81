"""Tests for network request summarizing."""
from capturepipe.network import NetworkSummarizer


def _request(request_id="1", url="https://api.shop.test/cart?id=1", method="POST", headers=None, **extra):
    event = {
        "requestId": request_id,
        "type": "XHR",
        "tab_id": "tab-1",
        "request": {"url": url, "method": method, "headers": headers or {"Content-Type": "application/json"}},
    }
    event.update(extra)
    return event


def test_first_request_is_summarized():
    summary = NetworkSummarizer().process(_request(initiator={"type": "script"}))
    assert summary == {
        "kind": "request",
        "method": "POST",
        "url": "https://api.shop.test/cart?id=1",
        "type": "XHR",
        "initiator": {"type": "script"},
        "headers": {"Content-Type": "application/json"},
    }


def test_identical_repeat_is_skipped():
    summarizer = NetworkSummarizer()
    summarizer.process(_request("1"))
    assert summarizer.process(_request("2")) is None


def test_repeat_with_changed_header_is_a_diff():
    summarizer = NetworkSummarizer()
    summarizer.process(_request("1"))
    diff = summarizer.process(_request("2", headers={"Content-Type": "text/plain"}))
    assert diff["kind"] == "diff"
    assert diff["fingerprint"] == "tab-1::POST::https://api.shop.test/cart"
    assert list(diff["changes"].values()) == ["text/plain"]


def test_query_string_does_not_change_fingerprint():
    summarizer = NetworkSummarizer()
    assert summarizer.fingerprint(_request(url="https://a.test/p?x=1")) == \
        summarizer.fingerprint(_request(url="https://a.test/p?x=2"))


def test_static_resources_are_skipped():
    assert NetworkSummarizer().process(_request(type="Image")) is None


def test_long_url_is_shortened():
    url = "https://a.test/search?" + "&".join(f"q{i}={'v' * 40}" for i in range(6))
    summary = NetworkSummarizer().process(_request(url=url))
    assert summary["url"] == "https://a.test/search?q0=" + "v" * 40 + "&...(6 params)"


def test_reset_forgets_references():
    summarizer = NetworkSummarizer()
    summarizer.process(_request("1"))
    summarizer.reset()
    assert summarizer.process(_request("2"))["kind"] == "request"
