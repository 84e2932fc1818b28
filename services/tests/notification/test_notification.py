"""Tests for commit status notification."""

import asyncio

import pytest
from structlog.testing import capture_logs

from adosource.errors import TransportError
from adosource.gateway.models import GitStatusState
from adosource.models import (
    BranchHead,
    CheckoutStrategy,
    CommitRevision,
    Origin,
    PullRequestHead,
    PullRequestRevision,
    RealBranchType,
    TagHead,
)
from adosource.notification import (
    BuildInfo,
    BuildResult,
    BuildStatusNotifier,
    DefaultNotificationStrategy,
    NotificationContext,
    NotificationRequest,
    QueuedItem,
    QueuedJobNotifier,
    resolve_head_commit,
    status_context_name,
)
from adosource.source import AzureDevOpsSource
from adosource.traits import (
    DisableNotificationsTrait,
    NotificationStrategyTrait,
    OriginPullRequestDiscoveryTrait,
)

JOB_URL = "https://ci.example.com/job/widgets/"
BUILD_URL = "https://ci.example.com/job/widgets/7/"
MASTER = BranchHead("master")

PR_HEAD = PullRequestHead(
    name="PR-4",
    number=4,
    target=MASTER,
    source_owner="shop",
    source_repo="widgets",
    source_branch="feature",
    origin=Origin.ORIGIN,
    checkout_strategy=CheckoutStrategy.MERGE,
)


def make_source(gateway, *traits):
    return AzureDevOpsSource(gateway, "shop", "widgets", traits=list(traits))


class TestDefaultNotificationStrategy:
    @pytest.mark.parametrize(
        "result, state",
        [
            (None, GitStatusState.PENDING),
            (BuildResult.SUCCESS, GitStatusState.SUCCEEDED),
            (BuildResult.UNSTABLE, GitStatusState.FAILED),
            (BuildResult.FAILURE, GitStatusState.ERROR),
            (BuildResult.ABORTED, GitStatusState.ERROR),
            (BuildResult.NOT_BUILT, GitStatusState.ERROR),
        ],
    )
    def test_result_maps_to_state(self, result, state):
        context = NotificationContext(MASTER, JOB_URL, BuildInfo("#7", BUILD_URL, result))

        (request,) = DefaultNotificationStrategy().notifications(context, None)

        assert request.state is state
        assert request.url == BUILD_URL

    def test_queued_job_is_pending_with_job_url(self):
        (request,) = DefaultNotificationStrategy().notifications(
            NotificationContext(MASTER, JOB_URL), None
        )

        assert request.state is GitStatusState.PENDING
        assert request.url == JOB_URL
        assert request.message == "This commit is scheduled to be built."


class TestHelpers:
    def test_resolve_head_commit(self):
        assert resolve_head_commit(CommitRevision(MASTER, "abc")) == "abc"
        assert resolve_head_commit(PullRequestRevision(PR_HEAD, "b", "s", "m")) == "m"
        assert resolve_head_commit(PullRequestRevision(PR_HEAD, "b", "s")) is None

    def test_resolve_head_commit_rejects_unknown(self):
        with pytest.raises(ValueError):
            resolve_head_commit(object())

    def test_status_context_name(self):
        assert status_context_name(PR_HEAD) == "pr"
        assert status_context_name(BranchHead("4/merge", RealBranchType.PR)) == "pr"
        assert status_context_name(MASTER) == "commit"
        assert status_context_name(TagHead("v1")) == "commit"


class TestBuildStatusNotifier:
    async def test_branch_build_sets_commit_status(self, gateway):
        notifier = BuildStatusNotifier(make_source(gateway))

        await notifier.notify(
            CommitRevision(MASTER, "abc"),
            JOB_URL,
            BuildInfo("#7", BUILD_URL, BuildResult.SUCCESS),
        )

        ((sha, status),) = gateway.commit_statuses
        assert sha == "abc"
        assert status.state is GitStatusState.SUCCEEDED
        assert status.target_url == BUILD_URL
        assert status.description == "This commit looks good"
        assert (status.context.genre, status.context.name) == ("jenkins", "commit")
        assert gateway.pull_request_statuses == []

    async def test_pull_request_build_also_sets_pull_request_status(self, gateway):
        notifier = BuildStatusNotifier(make_source(gateway), genre="ci")

        await notifier.notify(
            PullRequestRevision(PR_HEAD, "base", "src", "mrg"),
            JOB_URL,
            BuildInfo("#7", BUILD_URL, None),
        )

        ((sha, status),) = gateway.commit_statuses
        ((number, pr_status),) = gateway.pull_request_statuses
        assert sha == "mrg"
        assert number == 4
        assert status.state is GitStatusState.PENDING
        assert (pr_status.context.genre, pr_status.context.name) == ("ci", "pr")

    async def test_rejected_status_logs_warning(self, gateway):
        gateway.reject_statuses = True
        notifier = BuildStatusNotifier(make_source(gateway))

        with capture_logs() as logs:
            await notifier.notify(CommitRevision(MASTER, "abc"), JOB_URL)

        warnings = [e for e in logs if e["log_level"] == "warning"]
        assert len(warnings) == 1
        assert warnings[0]["event"].startswith("Could not update commit status")

    async def test_ignored_errors_stay_quiet(self, gateway):
        class Quiet:
            def notifications(self, context, log):
                return [
                    NotificationRequest(JOB_URL, "fyi", GitStatusState.PENDING, ignore_error=True)
                ]

        gateway.reject_statuses = True
        notifier = BuildStatusNotifier(make_source(gateway, NotificationStrategyTrait(Quiet())))

        with capture_logs() as logs:
            await notifier.notify(PullRequestRevision(PR_HEAD, "b", "s", "m"), JOB_URL)

        assert [e for e in logs if e["log_level"] == "warning"] == []
        assert len(gateway.commit_statuses) == 1
        assert len(gateway.pull_request_statuses) == 1

    async def test_custom_strategies_replace_default(self, gateway):
        class Twice:
            def notifications(self, context, log):
                return [
                    NotificationRequest(JOB_URL, "one", GitStatusState.PENDING),
                    NotificationRequest(JOB_URL, "two", GitStatusState.NOT_APPLICABLE),
                ]

        notifier = BuildStatusNotifier(make_source(gateway, NotificationStrategyTrait(Twice())))

        await notifier.notify(CommitRevision(MASTER, "abc"), JOB_URL)

        assert [s.description for _, s in gateway.commit_statuses] == ["one", "two"]

    async def test_disabled_notifications_post_nothing(self, gateway):
        notifier = BuildStatusNotifier(make_source(gateway, DisableNotificationsTrait()))

        await notifier.notify(CommitRevision(MASTER, "abc"), JOB_URL)

        assert gateway.commit_statuses == []

    async def test_missing_merge_commit_is_skipped(self, gateway):
        notifier = BuildStatusNotifier(make_source(gateway))

        with capture_logs() as logs:
            await notifier.notify(PullRequestRevision(PR_HEAD, "b", "s"), JOB_URL)

        assert gateway.commit_statuses == []
        assert any(e["event"] == "No commit to notify" for e in logs)

    async def test_transport_failure_never_reaches_the_build(self, gateway):
        async def broken(repo, sha, status):
            raise TransportError("down", status_code=503)

        gateway.create_commit_status = broken
        notifier = BuildStatusNotifier(make_source(gateway))

        with capture_logs() as logs:
            await notifier.notify(CommitRevision(MASTER, "abc"), JOB_URL)

        assert any(e["event"] == "Could not update commit status" for e in logs)

    async def test_finished_build_is_logged(self, gateway):
        notifier = BuildStatusNotifier(make_source(gateway))

        with capture_logs() as logs:
            await notifier.notify(
                CommitRevision(MASTER, "abc"),
                JOB_URL,
                BuildInfo("#7", BUILD_URL, BuildResult.FAILURE),
            )

        (event,) = [e for e in logs if e["event"] == "Commit status set"]
        assert event["result"] == "FAILURE"


class FakeQueue:
    def __init__(self, left=()):
        self.left = set(left)

    def has_left(self, item_id):
        return item_id in self.left


class TestQueuedJobNotifier:
    async def test_pending_status_for_queued_pull_request(self, gateway):
        gateway.add_branch("master", "tip")
        gateway.add_pull_request(4, source="feature", merge_sha="m4")
        source = make_source(gateway, OriginPullRequestDiscoveryTrait({CheckoutStrategy.MERGE}))
        queued = QueuedJobNotifier(source, FakeQueue())

        task = queued.on_enter_waiting(QueuedItem(1, PR_HEAD, JOB_URL))
        await queued.drain()

        assert task is not None and task.done()
        ((sha, status),) = gateway.commit_statuses
        assert sha == "m4"
        assert status.state is GitStatusState.PENDING
        assert status.target_url == JOB_URL

    async def test_branch_items_are_ignored(self, gateway):
        queued = QueuedJobNotifier(make_source(gateway), FakeQueue())

        assert queued.on_enter_waiting(QueuedItem(1, MASTER, JOB_URL)) is None

    async def test_disabled_notifications_schedule_nothing(self, gateway):
        queued = QueuedJobNotifier(make_source(gateway, DisableNotificationsTrait()), FakeQueue())

        assert queued.on_enter_waiting(QueuedItem(1, PR_HEAD, JOB_URL)) is None

    async def test_item_that_left_the_queue_is_not_notified(self, gateway):
        gateway.add_pull_request(4, source="feature")
        queued = QueuedJobNotifier(make_source(gateway), FakeQueue(left={1}))

        queued.on_enter_waiting(QueuedItem(1, PR_HEAD, JOB_URL))
        await queued.drain()

        assert gateway.commit_statuses == []

    async def test_vanished_pull_request_logs_warning(self, gateway):
        queued = QueuedJobNotifier(make_source(gateway), FakeQueue())

        with capture_logs() as logs:
            queued.on_enter_waiting(QueuedItem(1, PR_HEAD, JOB_URL))
            await queued.drain()

        (warning,) = [e for e in logs if e["log_level"] == "warning"]
        assert "PENDING" in warning["event"]
        assert gateway.commit_statuses == []

    async def test_worker_limit(self, gateway):
        for number in range(1, 6):
            gateway.add_pull_request(number, source=f"f{number}")
        running = 0
        peak = 0
        original = gateway.get_pull_request

        async def slow_get_pull_request(repo, number):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1
            return await original(repo, number)

        gateway.get_pull_request = slow_get_pull_request
        queued = QueuedJobNotifier(make_source(gateway), FakeQueue(), max_workers=2)

        for number in range(1, 6):
            head = PullRequestHead(
                name=f"PR-{number}",
                number=number,
                target=MASTER,
                source_owner="shop",
                source_repo="widgets",
                source_branch=f"f{number}",
                origin=Origin.ORIGIN,
                checkout_strategy=CheckoutStrategy.MERGE,
            )
            queued.on_enter_waiting(QueuedItem(number, head, JOB_URL))
        await queued.drain()

        assert peak == 2
        assert len(gateway.commit_statuses) == 5
