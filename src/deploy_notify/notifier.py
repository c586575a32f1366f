"""Orchestrator for one deployment notification run.

This module ties together all the components:
- Identity resolution (context/identity.py)
- Deployed-commit discovery (context/status.py)
- Commit range diffing (context/diff.py)
- Message compilation (compiler.py)
- Dispatch to Slack (dispatcher.py)

The notifier follows this flow:
1. Validate the configuration (repository references, required URLs)
2. Resolve identities and, for started/failure runs, fetch the deployed
   commit. These two run concurrently; if one fails the other is cancelled.
3. Diff the deployed commit against the commit being deployed
4. Compile the message
5. Dispatch it

The whole run is bounded by config.deadline. Any fatal error is reported
by the CLI as a GitHub Actions error annotation and a non-zero exit code.
"""

from __future__ import annotations

import argparse
import asyncio
import sys

import httpx
import structlog

from deploy_notify.compiler import MessageCompiler
from deploy_notify.config import NotifierConfig
from deploy_notify.context.diff import CommitRangeDiffer, CommitRangeDifferProtocol
from deploy_notify.context.github import GitHubClient
from deploy_notify.context.identity import GitHubIdentityResolver, IdentityResolverProtocol
from deploy_notify.context.status import DeployedCommitFetcher, DeployedCommitFetcherProtocol
from deploy_notify.dispatcher import SlackDispatcher
from deploy_notify.errors import ConfigurationError, DeadlineExceeded
from deploy_notify.logging_config import get_logger, setup_logging
from deploy_notify.schemas import CommitRecord, NotificationMessage

logger = get_logger(__name__)


def escape_workflow_data(value: str) -> str:
    """Escape a value for use in a GitHub Actions workflow command."""
    return value.replace("%", "%25").replace("\r", "%0D").replace("\n", "%0A")


class DeployNotifier:
    """Runs the notification pipeline for one deployment event.

    Components default to the real GitHub/Slack implementations built from
    the config; tests pass mocks or an httpx transport instead.

    Usage:
        notifier = DeployNotifier(NotifierConfig.load())
        message = await notifier.run()
    """

    def __init__(
        self,
        config: NotifierConfig,
        identity_resolver: IdentityResolverProtocol | None = None,
        commit_fetcher: DeployedCommitFetcherProtocol | None = None,
        differ: CommitRangeDifferProtocol | None = None,
        dispatcher: SlackDispatcher | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Validate the configuration and assemble the pipeline.

        Raises:
            ConfigurationError: If a repository reference is malformed or the
                status URL is missing for a status that needs a diff
        """
        self.config = config
        self.event = config.deployment_event()
        self.owner, self.repo = config.owner_and_name
        map_owner, map_repo = config.mapping_owner_and_name

        if self.event.status.needs_diff and commit_fetcher is None and not config.service_status_url:
            raise ConfigurationError(
                f"service_status_url is required for status {self.event.status.value!r}"
            )

        github = GitHubClient(
            token=config.github_token,
            timeout=config.request_timeout,
            transport=transport,
        )
        self.identity_resolver = identity_resolver or GitHubIdentityResolver(
            github,
            map_owner,
            map_repo,
            path=config.slack_map_file,
            timeout=config.request_timeout,
            transport=transport,
        )
        self.commit_fetcher = commit_fetcher
        if self.commit_fetcher is None and config.service_status_url:
            self.commit_fetcher = DeployedCommitFetcher(
                config.service_status_url,
                field=config.status_commit_field,
                authorization=config.service_status_authorization,
                timeout=config.request_timeout,
                transport=transport,
            )
        self.differ = differ or CommitRangeDiffer(github)
        self.compiler = MessageCompiler(
            self.owner,
            self.repo,
            template=config.message_template,
            environment_url=config.environment_url,
        )
        self.dispatcher = dispatcher or SlackDispatcher(
            config.slack_webhook,
            channels=config.channels,
            failure_channels=config.failure_channels,
            icon=config.icon,
            username=config.username,
            dry_run=config.dry_run,
            timeout=config.request_timeout,
            transport=transport,
        )

    async def run(self) -> NotificationMessage:
        """Run the pipeline within the configured deadline.

        Returns:
            The compiled (and, unless dry-running, dispatched) message

        Raises:
            FatalError: Any unrecovered pipeline failure
        """
        structlog.contextvars.bind_contextvars(
            repo=f"{self.owner}/{self.repo}",
            environment=self.event.environment,
            status=self.event.status.value,
        )
        try:
            return await asyncio.wait_for(self._run(), timeout=self.config.deadline)
        except asyncio.TimeoutError as exc:
            raise DeadlineExceeded(
                f"Notification run exceeded the {self.config.deadline:g}s deadline"
            ) from exc
        finally:
            structlog.contextvars.unbind_contextvars("repo", "environment", "status")

    async def _run(self) -> NotificationMessage:
        event = self.event
        commits: list[CommitRecord] = []

        if event.status.needs_diff:
            try:
                async with asyncio.TaskGroup() as group:
                    identity_task = group.create_task(self.identity_resolver.resolve())
                    commit_task = group.create_task(self.commit_fetcher.fetch())
            except ExceptionGroup as eg:
                # Report the first failure as itself, not wrapped in a group.
                raise eg.exceptions[0]
            identity_map = identity_task.result()
            deployed_commit = commit_task.result()
            commits = await self.differ.diff(
                self.owner, self.repo, deployed_commit, event.commit
            )
        else:
            identity_map = await self.identity_resolver.resolve()
            logger.info("diff_skipped")

        message = self.compiler.compile(event, identity_map, commits)
        logger.info("message_compiled", headline=message.headline, blocks=len(message.blocks))

        channels = await self.dispatcher.dispatch(message, event.status)
        logger.info("run_complete", channels=channels, dry_run=self.config.dry_run)
        return message


# ---------------------------------------------------------------------------
# CLI Entry Point
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> None:
    """CLI entry point, normally invoked from a GitHub Actions step.

    Usage:
        deploy-notify                          # inputs from INPUT_* env vars
        deploy-notify --config notify.yml --dry-run

    Exits with status 1 and a ::error:: annotation on any failure.
    """
    parser = argparse.ArgumentParser(description="Deployment status notifier for Slack")
    parser.add_argument(
        "--config", "-c",
        type=str,
        help="Path to a YAML file with default inputs",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        default=None,
        help="Compile the message but don't send it",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        help="DEBUG, INFO, WARNING or ERROR (defaults to LOG_LEVEL or INFO)",
    )
    args = parser.parse_args(argv)

    setup_logging(log_level=args.log_level)

    try:
        config = NotifierConfig.load(args.config, dry_run=args.dry_run)
        notifier = DeployNotifier(config)
        asyncio.run(notifier.run())
    except Exception as e:
        logger.error("run_failed", error=str(e), error_type=type(e).__name__)
        print(f"::error::{escape_workflow_data(str(e))}")
        sys.exit(1)


if __name__ == "__main__":
    main()
