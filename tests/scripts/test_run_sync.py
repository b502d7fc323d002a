from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest

from esports_ingest.services.sync.errors import FatalPipelineError
from esports_ingest.services.sync.types import ItemError, JobStats
from scripts.run_sync import parse_args, run_sync

STARTED = datetime(2025, 6, 1, tzinfo=timezone.utc)


def _context():
    return SimpleNamespace(aclose=AsyncMock())


def test_parse_args_defaults():
    args = parse_args(["players"])

    assert args.family == "players"
    assert args.scope == "all"
    assert args.no_notify is False


def test_parse_args_rejects_unknown_family():
    with pytest.raises(SystemExit):
        parse_args(["matches"])


@pytest.mark.asyncio
async def test_item_errors_still_exit_zero(capsys):
    stats = JobStats(
        job_name="players",
        created=1,
        updated=0,
        skipped=5,
        errors=(ItemError("ghost", "ItemNotFoundError: gone"),),
        started_at=STARTED,
        finished_at=STARTED,
    )
    context = _context()

    with patch("scripts.run_sync.JobRunner") as runner_cls:
        runner_cls.return_value.run = AsyncMock(return_value=stats)
        code = await run_sync(parse_args(["players", "org:xset", "--no-notify"]), context)

    assert code == 0
    runner_cls.assert_called_once_with(context, notify=False)
    assert runner_cls.return_value.run.await_args.args == ("players", "org:xset")
    context.aclose.assert_awaited_once()
    out = capsys.readouterr().out
    assert "players: created=1 updated=0 skipped=5 errors=1" in out
    assert "ghost: ItemNotFoundError: gone" in out


@pytest.mark.asyncio
async def test_aborted_pass_exits_one():
    context = _context()

    with patch("scripts.run_sync.JobRunner") as runner_cls:
        runner_cls.return_value.run = AsyncMock(side_effect=FatalPipelineError("catalog unreachable"))
        code = await run_sync(parse_args(["transfers"]), context)

    assert code == 1
    context.aclose.assert_awaited_once()


@pytest.mark.asyncio
async def test_already_running_exits_zero():
    with patch("scripts.run_sync.JobRunner") as runner_cls:
        runner_cls.return_value.run = AsyncMock(return_value=None)
        code = await run_sync(parse_args(["earnings"]), _context())

    assert code == 0
