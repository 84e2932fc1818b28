"""Tests for source context, traits, requests and the lazy collections behind them."""

from contextlib import aclosing

import pytest
import structlog

from adosource.context import Request, SourceContext
from adosource.errors import ClosedError, TransportError, WrappedError, unwrap
from adosource.gateway.models import GitRef, GitRepository
from adosource.lazy import LazyIterable, ObservingIterator
from adosource.lazy_refs import sort_default_first
from adosource.models import (
    BranchHead,
    CheckoutStrategy,
    CommitRevision,
    Origin,
    PullRequestHead,
    TagHead,
    pull_request_head_name,
)
from adosource.notification import DefaultNotificationStrategy
from adosource.observer import SingleHeadObserver
from adosource.traits import (
    BranchDiscoveryTrait,
    DisableNotificationsTrait,
    ForkPullRequestDiscoveryTrait,
    NotificationStrategyTrait,
    OriginPullRequestDiscoveryTrait,
    TagDiscoveryTrait,
    TrustPermission,
    WildcardHeadPrefilter,
    default_traits,
)

HEAD, MERGE = CheckoutStrategy.HEAD, CheckoutStrategy.MERGE
REPO = GitRepository(name="widgets")


def pr_head(number=1, target="master", strategy=MERGE, origin=Origin.ORIGIN):
    return PullRequestHead(
        name=f"PR-{number}",
        number=number,
        target=BranchHead(target),
        source_owner="shop",
        source_repo="widgets",
        source_branch="feature",
        origin=origin,
        checkout_strategy=strategy,
    )


def make_request(context: SourceContext) -> Request:
    return Request(context, REPO, "shop", structlog.get_logger())


class TestHeadNames:
    def test_single_strategy_has_no_suffix(self):
        assert pull_request_head_name(12, MERGE, 1) == "PR-12"

    def test_several_strategies_get_lower_case_suffix(self):
        assert pull_request_head_name(12, MERGE, 2) == "PR-12-merge"
        assert pull_request_head_name(12, HEAD, 2) == "PR-12-head"

    def test_ref_names(self):
        assert BranchHead("main").ref_name == "heads/main"
        assert TagHead("v1").ref_name == "tags/v1"
        assert pr_head(3).ref_name == "pull/3/merge"
        assert pr_head(3, strategy=HEAD).ref_name == "pull/3/head"

    def test_tag_timestamp_not_part_of_identity(self):
        assert TagHead("v1", 10) == TagHead("v1", 20)
        assert hash(TagHead("v1", 10)) == hash(TagHead("v1", 20))


class TestSourceContext:
    def test_traits_configure_context(self):
        context = SourceContext().with_traits(
            [
                BranchDiscoveryTrait(BranchDiscoveryTrait.ALL_BRANCHES),
                OriginPullRequestDiscoveryTrait({HEAD}),
                ForkPullRequestDiscoveryTrait({MERGE}),
                TagDiscoveryTrait(),
            ]
        )

        assert context.wants_branches and context.wants_tags and context.wants_prs
        assert context.strategies_for(Origin.ORIGIN) == {HEAD}
        assert context.strategies_for(Origin.FORK) == {MERGE}
        assert isinstance(context.trust, TrustPermission)

    def test_strategies_empty_when_origin_class_not_wanted(self):
        context = SourceContext().with_traits([OriginPullRequestDiscoveryTrait({MERGE})])

        assert context.strategies_for(Origin.FORK) == frozenset()

    def test_frozen_context_rejects_changes(self):
        context = SourceContext().with_traits([TagDiscoveryTrait()]).freeze()

        with pytest.raises(RuntimeError):
            context.wants_branches = True
        with pytest.raises(RuntimeError):
            context.with_traits([TagDiscoveryTrait()])
        assert context.frozen

    def test_notification_traits(self):
        strategy = DefaultNotificationStrategy()
        context = SourceContext().with_traits(
            [NotificationStrategyTrait(strategy), DisableNotificationsTrait()]
        ).freeze()

        assert context.notification_strategies == (strategy,)
        assert context.notifications_disabled

    def test_default_traits(self):
        context = SourceContext().with_traits(default_traits())

        assert context.wants_branches
        assert context.strategies_for(Origin.ORIGIN) == {MERGE}
        assert context.strategies_for(Origin.FORK) == {MERGE}
        assert not context.wants_tags
        assert len(context.filters) == 1

    def test_unknown_branch_strategy(self):
        with pytest.raises(ValueError):
            BranchDiscoveryTrait(4)

    @pytest.mark.parametrize(
        "strategy_id, build_branch, build_branches_with_pr",
        [(1, True, False), (2, False, True), (3, True, True)],
    )
    def test_branch_strategy_flags(self, strategy_id, build_branch, build_branches_with_pr):
        trait = BranchDiscoveryTrait(strategy_id)

        assert trait.build_branch is build_branch
        assert trait.build_branches_with_pr is build_branches_with_pr


class TestWildcardHeadPrefilter:
    def test_includes_and_excludes(self):
        prefilter = WildcardHeadPrefilter("main feature/*", "feature/wip*")

        assert not prefilter.is_excluded(BranchHead("main"))
        assert not prefilter.is_excluded(BranchHead("feature/login"))
        assert prefilter.is_excluded(BranchHead("feature/wip-login"))
        assert prefilter.is_excluded(BranchHead("bugfix"))

    def test_pull_requests_match_on_target(self):
        prefilter = WildcardHeadPrefilter("main")

        assert not prefilter.is_excluded(pr_head(target="main"))
        assert prefilter.is_excluded(pr_head(target="develop"))

    def test_case_sensitive(self):
        assert WildcardHeadPrefilter("Main").is_excluded(BranchHead("main"))


class TestRequest:
    def test_requested_sets_from_observer(self):
        context = SourceContext(observer=SingleHeadObserver(pr_head(5))).freeze()

        request = make_request(context)

        assert request.requested_pull_request_numbers == {5}
        assert request.requested_origin_branch_names == {"feature"}
        assert request.requested_tag_names == set()

    def test_fork_pr_does_not_request_its_branch(self):
        head = pr_head(5, origin=Origin.FORK)
        context = SourceContext(observer=SingleHeadObserver(head)).freeze()

        assert make_request(context).requested_origin_branch_names == set()

    def test_no_includes_means_no_narrowing(self):
        request = make_request(SourceContext().freeze())

        assert request.requested_pull_request_numbers is None
        assert request.requested_tag_names is None

    async def test_process_without_criteria_skips_probe(self):
        observer = SingleHeadObserver(BranchHead("main"))
        request = make_request(SourceContext(observer=observer).freeze())
        revision = CommitRevision(BranchHead("main"), "abc")

        async def no_probe(head):
            raise AssertionError("probe must not be opened")

        async def revision_factory(head):
            return revision

        witnessed = []
        done = await request.process(
            BranchHead("main"),
            no_probe,
            revision_factory,
            lambda head, rev, matched: witnessed.append(matched),
        )

        assert done is True
        assert observer.revision == revision
        assert witnessed == [True]

    async def test_excluded_head_is_not_observed(self):
        observer = SingleHeadObserver(BranchHead("main"))
        request = make_request(SourceContext(observer=observer).freeze())

        async def fail(head):
            raise AssertionError("not reached")

        done = await request.process(BranchHead("other"), fail, fail)

        assert done is False
        assert observer.revision is None

    async def test_closed_request_refuses_work(self):
        request = make_request(SourceContext().freeze())
        async with request:
            pass

        with pytest.raises(ClosedError):
            request.branches()

    async def test_origin_pull_requests_are_always_trusted(self):
        request = make_request(SourceContext().freeze())

        assert await request.is_trusted(pr_head())
        assert not await request.is_trusted(pr_head(origin=Origin.FORK))


class TestLazyIterable:
    async def test_producer_runs_once(self):
        calls = []

        async def producer():
            calls.append(1)
            return [1, 2, 3]

        lazy = LazyIterable(producer)
        assert not lazy.fetched

        first = [x async for x in lazy]
        second = [x async for x in lazy]

        assert first == second == [1, 2, 3]
        assert calls == [1]

    async def test_transport_failure_is_wrapped(self):
        async def producer():
            raise TransportError("down", status_code=502)

        with pytest.raises(WrappedError) as exc_info:
            [x async for x in LazyIterable(producer)]

        cause = unwrap(exc_info.value)
        assert isinstance(cause, TransportError)
        assert cause.status_code == 502


class TestObservingIterator:
    async def test_observes_each_item_and_completion(self):
        seen, completed = [], []

        async def items():
            for x in "abc":
                yield x

        result = [
            x async for x in ObservingIterator(items(), seen.append, lambda: completed.append(1))
        ]

        assert result == seen == ["a", "b", "c"]
        assert completed == [1]

    async def test_early_stop_never_completes(self):
        seen, completed = [], []

        async def items():
            for x in "abc":
                yield x

        async for x in ObservingIterator(items(), seen.append, lambda: completed.append(1)):
            if x == "b":
                break

        assert seen == ["a", "b"]
        assert completed == []

    async def test_aclose_releases_source_without_completing(self):
        completed, released = [], []

        async def items():
            try:
                for x in "abc":
                    yield x
            finally:
                released.append(1)

        async with aclosing(
            ObservingIterator(items(), lambda x: None, lambda: completed.append(1))
        ) as it:
            async for x in it:
                if x == "a":
                    break

        assert released == [1]
        assert completed == []
        assert [x async for x in it] == []


class TestSortDefaultFirst:
    def test_moves_default_to_front_and_keeps_order(self):
        refs = [
            GitRef(name=f"refs/heads/{name}", object_id=name)
            for name in ("zeta", "main", "alpha")
        ]

        ordered = sort_default_first(refs, "main")

        assert [r.branch_name for r in ordered] == ["main", "zeta", "alpha"]
