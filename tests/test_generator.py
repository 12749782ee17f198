import random
import xml.etree.ElementTree as ET

from blobsink.generator import TrafficGenerator, build_parser, generate_xml, main


class FakeResponse:
    def __init__(self, status_code):
        self.status_code = status_code


class FakeSession:
    def __init__(self, statuses):
        self.statuses = list(statuses)
        self.posted = []

    def post(self, url, data=None, timeout=None):
        self.posted.append((url, data))
        status = self.statuses.pop(0)
        if isinstance(status, Exception):
            raise status
        return FakeResponse(status)


def test_generated_document_shape():
    root = ET.fromstring(generate_xml(random.Random(7)))
    assert root.tag == "doc"
    assert [child.tag for child in root] == ["id", "name", "c0", "c1", "c2", "c3", "short", "a0", "a1", "a2", "a3"]
    assert len(root.findtext("id")) == 36


def test_post_counts_success_and_failure():
    import requests

    session = FakeSession([200, 500, requests.ConnectionError("refused")])
    gen = TrafficGenerator("http://receiver/", workers=0, session=session)
    assert gen.post("<doc/>") is True
    assert gen.post("<doc/>") is False
    assert gen.post("<doc/>") is False
    assert gen.status_line() == "success: 1, fail: 2."
    assert session.posted[0] == ("http://receiver/", b"<doc/>")


def test_parser_defaults(monkeypatch):
    monkeypatch.delenv("URL", raising=False)
    monkeypatch.delenv("INTERVAL", raising=False)
    args = build_parser().parse_args(["-u", "http://x/"])
    assert args.url == "http://x/"
    assert args.interval == 1000


def test_url_required(monkeypatch):
    monkeypatch.delenv("URL", raising=False)
    assert main([]) == 2
