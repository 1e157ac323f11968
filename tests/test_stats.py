import unittest
from datetime import timedelta

from sqlalchemy.exc import OperationalError

import models
import stats
from helpers import ADMIN_EMAIL, APITestCase, FakeClock


def broken_metric(db):
    raise OperationalError("SELECT count(*) FROM users", {}, Exception("database is locked"))


class TestStatsAggregator(APITestCase):

    def setUp(self):
        super().setUp()
        self.sign_in("alice")
        self.sign_in("bob")
        self.sign_in("root", ADMIN_EMAIL)
        self.set_user("bob", last_login=models.utcnow() - timedelta(days=3), total_generations=4)

    def test_compute(self):
        snapshot = self.aggregator.compute(self.db)
        self.assertEqual(snapshot["totalUsers"], 3)
        self.assertEqual(snapshot["proUsers"], 1)
        self.assertEqual(snapshot["freeUsers"], 2)
        self.assertEqual(snapshot["activeToday"], 2)
        self.assertEqual(snapshot["totalGenerations"], 4)

    def test_public_endpoint_hit_and_miss(self):
        first = self.client.get("/stats/public")
        self.assertEqual(first.headers["X-Cache"], "MISS")
        self.assertTrue(first.json()["success"])
        self.assertEqual(first.json()["totalUsers"], 3)

        self.sign_in("carol")
        second = self.client.get("/stats/public")
        self.assertEqual(second.headers["X-Cache"], "HIT")
        self.assertEqual(second.json()["totalUsers"], 3)

        self.clock.advance(301)
        third = self.client.get("/stats/public")
        self.assertEqual(third.headers["X-Cache"], "MISS")
        self.assertEqual(third.json()["totalUsers"], 4)

    def test_one_failing_metric_is_defaulted(self):
        aggregator = stats.StatsAggregator(metrics={**stats.DEFAULT_METRICS, "activeToday": broken_metric})
        with self.assertLogs("cvforge.stats", level="WARNING"):
            snapshot, state = aggregator.get(self.db)
        self.assertEqual(state, stats.CACHE_MISS)
        self.assertEqual(snapshot["activeToday"], 0)
        self.assertEqual(snapshot["totalUsers"], 3)
        self.assertEqual(snapshot["proUsers"], 1)

    def test_endpoint_with_failing_metric_still_succeeds(self):
        self.app.state.stats = stats.StatsAggregator(metrics={**stats.DEFAULT_METRICS, "activeToday": broken_metric})
        response = self.client.get("/stats/public")
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body["success"])
        self.assertEqual(body["totalUsers"], 3)
        self.assertEqual(body["proUsers"], 1)
        self.assertEqual(body["activeToday"], 0)

    def test_serves_stale_snapshot_then_fallback(self):
        clock = FakeClock()
        metrics = dict(stats.DEFAULT_METRICS)
        aggregator = stats.StatsAggregator(ttl_seconds=60, metrics=metrics, clock=clock)
        good, _ = aggregator.get(self.db)

        for name in metrics:
            aggregator.metrics[name] = broken_metric
        clock.advance(61)
        snapshot, state = aggregator.get(self.db)
        self.assertEqual(state, stats.CACHE_STALE)
        self.assertEqual(snapshot, good)

        cold = stats.StatsAggregator(metrics=aggregator.metrics, clock=clock)
        snapshot, state = cold.get(self.db)
        self.assertEqual(state, stats.CACHE_FALLBACK)
        self.assertEqual(snapshot["totalUsers"], 0)

    def test_fallback_headers(self):
        self.app.state.stats = stats.StatsAggregator(metrics={"totalUsers": broken_metric})
        response = self.client.get("/stats/public")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.headers["X-Cache"], "FALLBACK")
        self.assertEqual(response.headers["Cache-Control"], "no-store")

    def test_all_stats_is_admin_only(self):
        self.assertEqual(self.client.get("/stats/all", headers=self.headers_for("alice")).status_code, 403)
        body = self.client.get("/stats/all", headers=self.headers_for("root", ADMIN_EMAIL)).json()
        self.assertEqual(body["totalUsers"], 3)
        self.assertEqual(sorted(u["id"] for u in body["users"]), ["alice", "bob", "root"])

    def test_daily_and_count(self):
        self.set_user("alice", is_pro=True)
        headers = self.headers_for("alice")
        self.save_cv(headers)
        self.save_cv(headers)
        old = models.CVRecord(user_id="alice", compressed_html="x", created_at=models.utcnow() - timedelta(days=45))
        self.db.add(old)
        self.db.commit()

        self.assertEqual(self.client.get("/stats/cv-count").json(), {"count": 3})
        daily = self.client.get("/stats/daily").json()
        self.assertTrue(daily["success"])
        self.assertEqual(daily["dailyStats"], [{"date": models.utcnow().date().isoformat(), "generations": 2}])


if __name__ == "__main__":
    unittest.main()
