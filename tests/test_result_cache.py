import threading
import unittest
from dataclasses import replace

from application.services.result_cache import ResultCache, make_cache_key
from domain.entities import (
    DocumentType,
    RankingContext,
    ResolvedOptions,
    ScoreWeights,
    SearchFilter,
    SearchStrategy,
)


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestResultCache(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = FakeClock()
        self.cache: ResultCache[str] = ResultCache(max_entries=2, ttl_seconds=10, clock=self.clock)

    def test_entry_expires_after_ttl(self) -> None:
        self.cache.set("k", "v")
        self.clock.now = 9.9
        self.assertEqual(self.cache.get("k"), "v")

        self.clock.now = 10.0
        self.assertIsNone(self.cache.get("k"))
        self.assertEqual(len(self.cache), 0)

    def test_least_recently_used_entry_is_evicted(self) -> None:
        self.cache.set("a", "1")
        self.cache.set("b", "2")
        self.cache.get("a")
        self.cache.set("c", "3")

        self.assertEqual(self.cache.get("a"), "1")
        self.assertIsNone(self.cache.get("b"))
        self.assertEqual(self.cache.get("c"), "3")

    def test_overwrite_refreshes_value_and_ttl(self) -> None:
        self.cache.set("a", "1")
        self.clock.now = 8
        self.cache.set("a", "2")
        self.clock.now = 15

        self.assertEqual(self.cache.get("a"), "2")

    def test_stats_and_clear(self) -> None:
        self.cache.set("a", "1")
        self.cache.get("a")
        self.cache.get("missing")

        stats = self.cache.stats()
        self.assertEqual((stats["size"], stats["hits"], stats["misses"]), (1, 1, 1))

        self.cache.clear()
        self.assertEqual(len(self.cache), 0)

    def test_rejects_non_positive_capacity(self) -> None:
        with self.assertRaises(ValueError):
            ResultCache(max_entries=0)

    def test_concurrent_writers_respect_capacity(self) -> None:
        cache: ResultCache[int] = ResultCache(max_entries=50, ttl_seconds=60)

        def writer(offset: int) -> None:
            for number in range(200):
                cache.set(f"{offset}-{number}", number)
                cache.get(f"{offset}-{number // 2}")

        threads = [threading.Thread(target=writer, args=(offset,)) for offset in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(len(cache), 50)


class TestCacheKey(unittest.TestCase):
    def test_key_is_independent_of_field_order(self) -> None:
        self.assertEqual(
            make_cache_key("retry", {"limit": 5, "semantic": False}, 1),
            make_cache_key("retry", {"semantic": False, "limit": 5}, 1),
        )

    def test_key_changes_with_options_and_generation(self) -> None:
        base = make_cache_key("retry", {"limit": 5}, 1)

        self.assertNotEqual(base, make_cache_key("retry", {"limit": 6}, 1))
        self.assertNotEqual(base, make_cache_key("retry", {"limit": 5}, 2))
        self.assertNotEqual(base, make_cache_key("retries", {"limit": 5}, 1))


class TestResolvedOptionsKey(unittest.TestCase):
    def resolved(self, **changes) -> ResolvedOptions:
        base = ResolvedOptions(
            strategy=SearchStrategy.KEYWORD_ONLY,
            semantic=False,
            ranking=True,
            fine_ranking=False,
            limit=10,
            filter=SearchFilter(),
            weights=ScoreWeights(),
            cache=True,
            use_index=True,
            rebuild_index=False,
            context=RankingContext(),
        )
        return replace(base, **changes)

    def key(self, resolved: ResolvedOptions) -> str:
        return make_cache_key("retry", resolved.cache_fields(), 1)

    def test_every_output_affecting_option_changes_the_key(self) -> None:
        base = self.key(self.resolved())
        variants = {
            "semantic": self.resolved(semantic=True, strategy=SearchStrategy.FUSED),
            "ranking": self.resolved(ranking=False),
            "fine_ranking": self.resolved(fine_ranking=True),
            "filter": self.resolved(filter=SearchFilter(type=DocumentType.RECIPE)),
            "weights": self.resolved(weights=ScoreWeights(bm25=0.7)),
            "use_index": self.resolved(use_index=False),
            "context": self.resolved(context=RankingContext(language="swift")),
        }

        keys = {name: self.key(resolved) for name, resolved in variants.items()}

        for name, key in keys.items():
            with self.subTest(option=name):
                self.assertNotEqual(key, base)
        self.assertEqual(len(set(keys.values())), len(keys))

    def test_cache_flag_does_not_change_the_key(self) -> None:
        self.assertEqual(self.key(self.resolved()), self.key(self.resolved(cache=False)))


if __name__ == "__main__":
    unittest.main()
