"""Command dispatcher: Slack slash commands and button clicks to engine calls.

Every path returns a Slack message payload. Engine and collaborator errors
become ephemeral messages for the user who ran the command.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Mapping

from ..board.loader import BoardSnapshotLoader
from ..reports import renderer
from ..reports.blocks import ephemeral, message, primary_button_block
from ..sprint.engine import SprintEngine
from ..sprint.exceptions import SprintBotError
from ..sprint.models import SprintStatus
from .payloads import (
    InvalidSlackRequest,
    SlackRequest,
    format_kickoff_args,
    parse_kickoff_args,
    parse_request,
)
from .signature import verify_slack_request

logger = logging.getLogger(__name__)

KICKOFF = "/sprint-kickoff"
KICKOFF_CONFIRM = "/sprint-kickoff-confirm"
CHECK_IN = "/sprint-check-in"
STATUS = "/sprint-status"
BLOCKERS = "/sprint-blockers"
END = "/sprint-end"
CANCEL = "/sprint-cancel"
HELP = "/sprint-help"

HELP_TEXT = "\n".join([
    "*Sprint bot commands*",
    f"`{KICKOFF} MM/DD/YYYY Name` preview a new sprint and confirm with the Kick Off button",
    f"`{CHECK_IN}` or `{STATUS}` refresh from the board and post the current summary",
    f"`{BLOCKERS}` list blocked tickets in the active sprint",
    f"`{END}` close the active sprint and post its review",
    f"`{CANCEL}` abandon the active sprint without recording it",
    f"`{HELP}` show this message",
])

Handler = Callable[[SlackRequest], Awaitable[dict[str, Any]]]


class CommandDispatcher:
    def __init__(
        self,
        engine: SprintEngine,
        loader: BoardSnapshotLoader,
        signing_secret: str | None = None,
        board_url: str | None = None,
    ):
        self._engine = engine
        self._loader = loader
        self._signing_secret = signing_secret
        self._board_url = board_url
        self._handlers: dict[str, Handler] = {
            KICKOFF: self._preview_kickoff,
            KICKOFF_CONFIRM: self._confirm_kickoff,
            CHECK_IN: self._check_in,
            STATUS: self._check_in,
            BLOCKERS: self._blockers,
            END: self._end,
            CANCEL: self._cancel,
            HELP: self._help,
        }

    @property
    def commands(self) -> list[str]:
        return sorted(self._handlers)

    async def handle_http(
        self, headers: Mapping[str, str], body: str, now: float | None = None
    ) -> dict[str, Any]:
        """Verify and parse a raw Slack HTTP request, then dispatch it."""
        try:
            if self._signing_secret is not None:
                verify_slack_request(headers, body, self._signing_secret, now=now)
            request = parse_request(body)
        except InvalidSlackRequest as exc:
            logger.warning("Rejected Slack request: %s", exc)
            return ephemeral(f"⚠️ {exc}")
        return await self.dispatch(request)

    async def dispatch(self, request: SlackRequest) -> dict[str, Any]:
        handler = self._handlers.get(request.command)
        if handler is None:
            logger.info("Unrecognized command %r from %s", request.command, request.user_id)
            return ephemeral(f"Unknown command `{request.command}`.\n\n{HELP_TEXT}")
        try:
            return await handler(request)
        except SprintBotError as exc:
            logger.warning("Command %s failed: %s", request.command, exc)
            return ephemeral(f"⚠️ {exc}")

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _help(self, request: SlackRequest) -> dict[str, Any]:
        return ephemeral(HELP_TEXT)

    async def _preview_kickoff(self, request: SlackRequest) -> dict[str, Any]:
        try:
            end_date, name = parse_kickoff_args(request.text)
        except ValueError as exc:
            return ephemeral(f"⚠️ {exc}\n\n{HELP_TEXT}")

        records = await self._engine.records()
        if any(r.name == name for r in records):
            return ephemeral(f"⚠️ Sprint name {name} was already used")

        snapshot = await self._loader.load()
        preview = await self._engine.preview_kickoff(snapshot, name=name, end_date=end_date)
        text = renderer.render_kickoff_preview(preview, records)
        extra = []
        if preview.active_sprint_name is None:
            extra.append(primary_button_block(
                "Kick Off", KICKOFF_CONFIRM, format_kickoff_args(end_date, name)
            ))
        return message(text, board_url=self._board_url, extra_blocks=extra)

    async def _confirm_kickoff(self, request: SlackRequest) -> dict[str, Any]:
        try:
            end_date, name = parse_kickoff_args(request.text)
        except ValueError as exc:
            return ephemeral(f"⚠️ {exc}")
        snapshot = await self._loader.load()
        sprint = await self._engine.kickoff(
            snapshot, name=name, end_date=end_date, channel_id=request.channel_id
        )
        logger.info("Sprint %s kicked off by %s", sprint.name, request.user_id)
        return message(renderer.render_kickoff(sprint), board_url=self._board_url)

    async def _check_in(self, request: SlackRequest) -> dict[str, Any]:
        snapshot = await self._loader.load()
        delta = await self._engine.ingest_snapshot(snapshot)
        sprint = await self._engine.active_sprint()
        metrics = await self._engine.metrics()
        records = await self._engine.records()
        text = renderer.render_daily_summary(
            sprint, delta, metrics, records, today=snapshot.taken_at.date()
        )
        return message(text, board_url=self._board_url)

    async def _blockers(self, request: SlackRequest) -> dict[str, Any]:
        sprint = await self._engine.active_sprint()
        blockers = await self._engine.blockers()
        return message(renderer.render_blockers(sprint.name, blockers))

    async def _end(self, request: SlackRequest) -> dict[str, Any]:
        if await self._engine.get_status() is SprintStatus.ACTIVE:
            await self._engine.ingest_snapshot(await self._loader.load())
        record = await self._engine.close_sprint()
        sprint = await self._engine.current_sprint()
        records = await self._engine.records()
        text = renderer.render_sprint_review(sprint, record, records)
        return message(text, board_url=self._board_url)

    async def _cancel(self, request: SlackRequest) -> dict[str, Any]:
        sprint = await self._engine.cancel_sprint()
        logger.info("Sprint %s cancelled by %s", sprint.name, request.user_id)
        return message(renderer.render_cancelled(sprint), board_url=self._board_url)
