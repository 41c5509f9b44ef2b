"""
HTTP binding for the scoreboard engine.

Routes:
  POST /submit                          - submit a score (shared secret in body)
  GET  /leaderboard?limit=N             - top N players
  GET  /leaderboard/around/{player_id}  - top of the board plus the player's neighbourhood
  GET  /epoch                           - current epoch
  POST /claim/{player_id}               - claim this epoch's reward
  GET  /claim/{player_id}               - claim status
  GET  /archives                        - snapshot summaries
  GET  /archives/latest                 - most recent snapshot
  GET  /archives/{epoch}                - snapshot for a closed epoch
  POST /admin/reset                     - close the epoch (X-Admin-Secret)
  POST /admin/developer-reset           - wipe everything (X-Admin-Secret)
  GET  /admin/integrity                 - reset integrity report (X-Admin-Secret)
"""

import json
import logging
from typing import Optional

from aiohttp import web

from scoreboard.data_models.leaderboard import ArchiveSummary, ArchiveView
from scoreboard.data_models.requests import SubmitScoreRequest, LeaderboardQuery, validate_player_id
from scoreboard.utils.auth import ADMIN_HEADER, SecretChecker
from scoreboard.utils.leaderboard_exceptions import (
    ScoreboardException, InvalidInputError, PlayerNotFoundError, ArchiveNotFoundError
)

logger = logging.getLogger(__name__)


def _summary_json(summary: ArchiveSummary) -> dict:
    return {
        'epoch': summary.epoch,
        'period': summary.period_label,
        'labelPolicy': summary.label_policy,
        'playerCount': summary.player_count,
        'createdAt': summary.created_at.isoformat(),
    }


def _archive_json(view: ArchiveView) -> dict:
    data = _summary_json(view.summary)
    data['topPlayers'] = [entry.to_dict() for entry in view.top_players]
    return data


@web.middleware
async def error_middleware(request: web.Request, handler):
    """Map engine exceptions to JSON error responses."""
    try:
        return await handler(request)
    except ScoreboardException as e:
        if e.status_code >= 500:
            logger.error(f"{request.method} {request.path} failed: {e}")
        else:
            logger.info(f"{request.method} {request.path} -> {e.status_code} {e.error_code}")
        return web.json_response(
            {'error': e.error_code, 'message': e.user_message},
            status=e.status_code
        )
    except web.HTTPException:
        raise
    except Exception as e:
        logger.error(f"Unhandled error on {request.method} {request.path}: {e}", exc_info=True)
        return web.json_response({'error': 'server_error', 'message': 'Server error'}, status=500)


class ScoreboardHTTPServer:
    """Thin aiohttp adapter over the scoreboard services."""

    def __init__(self, ledger_service, ranking_service, epoch_service, archive_service,
                 claim_service, secret_checker: SecretChecker, score_max: int = None,
                 host: str = "0.0.0.0", port: int = 3000):
        self.ledger_service = ledger_service
        self.ranking_service = ranking_service
        self.epoch_service = epoch_service
        self.archive_service = archive_service
        self.claim_service = claim_service
        self.secret_checker = secret_checker
        self.score_max = score_max
        self.host = host
        self.port = port
        self._runner: Optional[web.AppRunner] = None

    def build_app(self) -> web.Application:
        app = web.Application(middlewares=[error_middleware])
        app.router.add_post("/submit", self._handle_submit)
        app.router.add_get("/leaderboard", self._handle_leaderboard)
        app.router.add_get("/leaderboard/around/{player_id}", self._handle_around)
        app.router.add_get("/epoch", self._handle_epoch)
        app.router.add_post("/claim/{player_id}", self._handle_claim)
        app.router.add_get("/claim/{player_id}", self._handle_claim_status)
        app.router.add_get("/archives", self._handle_list_archives)
        app.router.add_get("/archives/latest", self._handle_latest_archive)
        app.router.add_get("/archives/{epoch}", self._handle_get_archive)
        app.router.add_post("/admin/reset", self._handle_reset)
        app.router.add_post("/admin/developer-reset", self._handle_developer_reset)
        app.router.add_get("/admin/integrity", self._handle_integrity)
        return app

    async def start(self) -> None:
        """Start the HTTP server."""
        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info(f"Scoreboard HTTP server listening on {self.host}:{self.port}")

    async def stop(self) -> None:
        """Stop the HTTP server."""
        if self._runner:
            await self._runner.cleanup()
            logger.info("Scoreboard HTTP server stopped")

    # -- Player routes --

    async def _handle_submit(self, request: web.Request) -> web.Response:
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise InvalidInputError("body", "must be valid JSON")

        submission = SubmitScoreRequest.from_payload(body, score_max=self.score_max)
        result = await self.ledger_service.submit(submission)
        return web.json_response({
            'success': result.accepted,
            'improved': result.improved,
            'score': result.score,
            'rank': result.rank,
        })

    async def _handle_leaderboard(self, request: web.Request) -> web.Response:
        query = LeaderboardQuery.from_params(request.query, maximum=self.ranking_service.leaderboard_size)
        entries = await self.ranking_service.top_n(query.limit)
        return web.json_response([entry.to_dict() for entry in entries])

    async def _handle_around(self, request: web.Request) -> web.Response:
        player_id = validate_player_id(request.match_info["player_id"])
        view = await self.ranking_service.around(player_id)
        return web.json_response(view.to_dict())

    async def _handle_epoch(self, request: web.Request) -> web.Response:
        state = await self.epoch_service.get_state()
        return web.json_response({'epoch': state.epoch, 'startedAt': state.started_at.isoformat()})

    async def _handle_claim(self, request: web.Request) -> web.Response:
        result = await self.claim_service.claim(request.match_info["player_id"])
        return web.json_response({'granted': result.granted, 'epoch': result.epoch})

    async def _handle_claim_status(self, request: web.Request) -> web.Response:
        player_id = request.match_info["player_id"]
        view = await self.claim_service.get_claim(player_id)
        if view is None:
            raise PlayerNotFoundError(player_id)
        return web.json_response({
            'playerId': view.player_id,
            'lastClaimedEpoch': view.last_claimed_epoch,
            'currentEpoch': view.current_epoch,
            'claimedThisEpoch': view.claimed_this_epoch,
        })

    # -- Archive routes --

    async def _handle_list_archives(self, request: web.Request) -> web.Response:
        summaries = await self.archive_service.list_snapshots()
        return web.json_response({'archives': [_summary_json(s) for s in summaries]})

    async def _handle_latest_archive(self, request: web.Request) -> web.Response:
        view = await self.archive_service.latest_snapshot()
        if view is None:
            raise ArchiveNotFoundError()
        return web.json_response(_archive_json(view))

    async def _handle_get_archive(self, request: web.Request) -> web.Response:
        try:
            epoch = int(request.match_info["epoch"])
        except ValueError:
            raise InvalidInputError("epoch", "must be an integer")
        view = await self.archive_service.get_snapshot(epoch)
        return web.json_response(_archive_json(view))

    # -- Admin routes --

    async def _handle_reset(self, request: web.Request) -> web.Response:
        self.secret_checker.check_admin(request.headers.get(ADMIN_HEADER), "reset")
        result = await self.archive_service.reset()
        return web.json_response({
            'success': True,
            'period': result.period_label,
            'archived': result.archived_count,
            'archivedEpoch': result.archived_epoch,
            'newEpoch': result.new_epoch,
        })

    async def _handle_developer_reset(self, request: web.Request) -> web.Response:
        self.secret_checker.check_admin(request.headers.get(ADMIN_HEADER), "developer reset")
        result = await self.archive_service.developer_reset()
        return web.json_response({
            'success': True,
            'epoch': result.epoch,
            'deletedEntries': result.deleted_entries,
            'deletedSnapshots': result.deleted_snapshots,
            'deletedClaims': result.deleted_claims,
        })

    async def _handle_integrity(self, request: web.Request) -> web.Response:
        self.secret_checker.check_admin(request.headers.get(ADMIN_HEADER), "integrity check")
        report = await self.archive_service.check_integrity()
        return web.json_response({
            'consistent': report.consistent,
            'currentEpoch': report.current_epoch,
            'latestArchivedEpoch': report.latest_archived_epoch,
            'detail': report.detail,
        })
