# Overview: Pytest coverage for the per-app change feed.

from kasir import create_app
from kasir.services import change_feed

from conftest import TEST_CONFIG


class TestChangeFeed:
    def test_topic_and_wildcard_subscribers(self, app):
        feed = change_feed.ChangeFeed()
        got = []
        feed.subscribe("invoice.created", lambda t, p: got.append(("topic", p["id"])))
        feed.subscribe(change_feed.ALL_TOPICS, lambda t, p: got.append(("all", t)))

        feed.publish("invoice.created", {"id": 7})
        feed.publish("product.updated", {"id": 8})

        assert got == [("topic", 7), ("all", "invoice.created"), ("all", "product.updated")]

    def test_unsubscribe(self, app):
        feed = change_feed.ChangeFeed()
        got = []
        unsubscribe = feed.subscribe("x", lambda t, p: got.append(p))
        unsubscribe()
        unsubscribe()
        feed.publish("x", {"n": 1})
        assert got == []

    def test_failing_subscriber_is_logged_and_others_still_run(self, app, caplog):
        feed = change_feed.ChangeFeed()
        got = []

        def broken(topic, payload):
            raise RuntimeError("boom")

        feed.subscribe("x", broken)
        feed.subscribe("x", lambda t, p: got.append(t))
        with app.app_context():
            feed.publish("x")

        assert got == ["x"]
        assert "Change feed subscriber failed" in caplog.text

    def test_each_app_has_its_own_feed(self, app):
        other = create_app(TEST_CONFIG)
        got = []
        with app.app_context():
            unsubscribe = change_feed.subscribe("x", lambda t, p: got.append("first"))
        try:
            with other.app_context():
                change_feed.publish("x")
        finally:
            unsubscribe()
        assert got == []
