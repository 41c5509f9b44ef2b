import asyncio
import signal
from typing import Optional

from scoreboard.config import Config
from scoreboard.database.database import Database
from scoreboard.services.score_ledger import ScoreLedgerService
from scoreboard.services.ranking import RankingService
from scoreboard.services.epoch import EpochService
from scoreboard.services.archive import ArchiveService
from scoreboard.services.claims import ClaimService
from scoreboard.api.server import ScoreboardHTTPServer
from scoreboard.utils.auth import SecretChecker
from scoreboard.utils.logger import setup_logger, configure_root_logging

class ScoreboardApp:
    """Wires the database, services and HTTP server together."""

    def __init__(self, database: Optional[Database] = None, clock=None):
        self.db = database
        self.clock = clock
        self.logger = setup_logger(__name__)

        self.secret_checker: Optional[SecretChecker] = None
        self.ranking_service: Optional[RankingService] = None
        self.ledger_service: Optional[ScoreLedgerService] = None
        self.epoch_service: Optional[EpochService] = None
        self.archive_service: Optional[ArchiveService] = None
        self.claim_service: Optional[ClaimService] = None
        self.http_server: Optional[ScoreboardHTTPServer] = None

    async def setup(self):
        """Initialize storage and build every service"""
        self.logger.info("Setting up scoreboard...")

        if self.db is None:
            self.db = Database()
        await self.db.initialize()
        session_factory = self.db.session_factory

        self.secret_checker = SecretChecker(Config.SUBMIT_SECRET, Config.ADMIN_SECRET)
        self.ranking_service = RankingService(session_factory)
        self.ledger_service = ScoreLedgerService(
            session_factory, self.secret_checker, ranking_service=self.ranking_service, clock=self.clock
        )
        self.epoch_service = EpochService(session_factory, clock=self.clock)
        self.archive_service = ArchiveService(session_factory, self.epoch_service, clock=self.clock)
        self.claim_service = ClaimService(
            session_factory, self.epoch_service, self.archive_service, clock=self.clock
        )
        self.http_server = ScoreboardHTTPServer(
            self.ledger_service,
            self.ranking_service,
            self.epoch_service,
            self.archive_service,
            self.claim_service,
            self.secret_checker,
            score_max=Config.SCORE_MAX,
            host=Config.HOST,
            port=Config.PORT
        )

        epoch = await self.epoch_service.current_epoch()
        report = await self.archive_service.check_integrity()
        if not report.consistent:
            self.logger.warning(f"Archive integrity problem detected at startup: {report.detail}")

        self.logger.info(
            f"Scoreboard ready: epoch {epoch}, archive labels by {Config.ARCHIVE_LABEL_POLICY}, "
            f"claim policy {Config.CLAIM_POLICY}"
        )

    async def close(self):
        if self.http_server:
            await self.http_server.stop()
        if self.db:
            await self.db.close()
        self.logger.info("Scoreboard shut down")


async def run():
    configure_root_logging()
    Config.validate()

    app = ScoreboardApp()
    await app.setup()
    await app.http_server.start()

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    try:
        await stop_event.wait()
    finally:
        await app.close()


def main():
    asyncio.run(run())


if __name__ == "__main__":
    main()
