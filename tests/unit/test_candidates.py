"""Unit tests for candidate generation strategies and merging."""

import math

import pytest
from conftest import days_ago

from app.services.recommendation.candidates import CandidateGenerator, merge_candidates


@pytest.fixture
def social_store(store):
    """
    u1 favourites x1, x2, x3. u2 shares x1 and x2 and also likes c1, c2.
    u3 shares only x1 and likes c3. u1 follows shop S and user owner-o (who owns shop O).
    """
    for item_id in ("x1", "x2", "x3", "c1", "c2", "c3"):
        store.add_item(item_id, "misc")
    store.add_shop("S", owner_id="someone")
    store.add_shop("O", owner_id="owner-o")
    store.add_item("s1", "S")
    store.add_item("s2", "S")
    store.add_item("o1", "O")

    store.favorites += [("u1", "x1"), ("u1", "x2"), ("u1", "x3")]
    store.favorites += [("u2", "x1"), ("u2", "x2"), ("u2", "c1"), ("u2", "c2")]
    store.favorites += [("u3", "x1"), ("u3", "c3")]
    store.favorites += [("u9", "s1")]
    store.shop_follows.append(("u1", "S"))
    store.user_follows.append(("u1", "owner-o"))
    return store


class TestMergeCandidates:
    def test_keeps_highest_score_and_unions_sources(self, make_candidate):
        merged = merge_candidates(
            [make_candidate("a", score=3, sources=["item_collab"])],
            [make_candidate("a", score=50, sources=["shop_based"]), make_candidate("b", score=1)],
            [make_candidate("a", score=40, sources=["user_based"])],
        )
        assert merged["a"].total_score == 50
        assert merged["a"].sources == ["item_collab", "shop_based", "user_based"]
        assert merged["a"].source_diversity == 3
        assert set(merged) == {"a", "b"}

    def test_does_not_mutate_inputs(self, make_candidate):
        first = make_candidate("a", sources=["item_collab"])
        merge_candidates([first], [make_candidate("a", sources=["shop_based"])])
        assert first.sources == ["item_collab"]


class TestCandidateGenerator:
    async def test_item_collab_requires_two_shared_favorites(self, social_store):
        candidates = await CandidateGenerator(social_store).generate("u1")
        by_id = {c.item_id: c for c in candidates}

        # u3 shares a single favourite, below the overlap threshold for a 3-favourite user
        assert "c3" not in by_id
        assert by_id["c1"].total_score == 2
        assert by_id["c1"].sources == ["item_collab"]

    async def test_known_items_are_excluded(self, social_store):
        candidates = await CandidateGenerator(social_store).generate("u1")
        ids = {c.item_id for c in candidates}
        assert not ids & {"x1", "x2", "x3"}

    async def test_caller_exclusions_are_honoured(self, social_store):
        candidates = await CandidateGenerator(social_store).generate("u1", exclude_item_ids=["c1", "s2"])
        ids = {c.item_id for c in candidates}
        assert "c1" not in ids
        assert "s2" not in ids

    async def test_kept_items_are_excluded(self, social_store):
        social_store.keep_folders["f1"] = "u1"
        social_store.keep_items.append(("f1", "s1"))
        candidates = await CandidateGenerator(social_store).generate("u1")
        assert "s1" not in {c.item_id for c in candidates}

    async def test_shop_and_user_follow_expansion(self, social_store):
        candidates = await CandidateGenerator(social_store).generate("u1")
        by_id = {c.item_id: c for c in candidates}

        assert by_id["s1"].sources == ["shop_based"]
        assert by_id["s1"].total_score == pytest.approx(50 + math.log(2) * 5)
        assert by_id["s2"].total_score == pytest.approx(50)
        assert by_id["o1"].sources == ["user_based"]
        assert by_id["o1"].total_score == pytest.approx(40)
        assert by_id["o1"].shop_name == "Shop O"

    async def test_sorted_and_limited(self, social_store):
        candidates = await CandidateGenerator(social_store).generate("u1", candidate_limit=2)
        assert [c.item_id for c in candidates] == ["s1", "s2"]

    async def test_loose_overlap_for_small_histories(self, store):
        store.add_item("x1", "m")
        store.add_item("c3", "m")
        store.favorites += [("u1", "x1"), ("u3", "x1"), ("u3", "c3")]
        candidates = await CandidateGenerator(store).generate("u1")
        assert [c.item_id for c in candidates] == ["c3"]

    async def test_user_without_signal_gets_nothing(self, store):
        store.add_item("a", "s")
        assert await CandidateGenerator(store).generate("lonely") == []


class TestColdStart:
    async def test_recent_items_ranked_by_engagement(self, store):
        store.add_item("quiet", "s1", created_at=days_ago(2))
        store.add_item("loved", "s2", created_at=days_ago(10))
        store.add_item("ancient", "s3", created_at=days_ago(400))
        store.favorites += [("u1", "loved"), ("u2", "loved")]

        candidates = await CandidateGenerator(store).cold_start(limit=10)

        assert [c.item_id for c in candidates] == ["loved", "quiet"]
        assert candidates[0].total_score == pytest.approx(math.log(1 + 4) + 1)
        assert candidates[1].total_score == pytest.approx(1.0)
        assert candidates[0].sources == ["cold_start"]

    async def test_falls_back_to_latest_items(self, store):
        store.add_item("old1", "s1", created_at=days_ago(300))
        store.add_item("old2", "s2", created_at=days_ago(200))

        candidates = await CandidateGenerator(store).cold_start(limit=5)

        assert {c.item_id for c in candidates} == {"old1", "old2"}
        assert store.calls["get_latest_items"] == 1

    async def test_empty_catalogue(self, store):
        assert await CandidateGenerator(store).cold_start() == []
