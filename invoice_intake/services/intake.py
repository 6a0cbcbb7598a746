"""
Invoice intake pipeline.

One scan: authenticate once, discover Gmail messages with a PDF attachment,
then for each message

    fetch payload -> find PDF part -> download -> analyze
        -> (rejected: skipped) | duplicate check -> archive -> ledger

Each message ends as exactly one PipelineResult (success, skipped or error);
nothing a single message does can abort the scan. Only configuration and
auth problems, or a failed discovery query, end the scan early.
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import date
from typing import AsyncContextManager, AsyncIterator, Callable

import httpx
from loguru import logger

from ..core.errors import AuthError, ConfigurationError
from ..models.invoice import (
    ArchiveFolder,
    ErrorItem,
    PipelineResult,
    ProcessedItem,
    ProcessingSummary,
    ScanRequest,
    SkippedItem,
)
from ..models.message import Candidate, EmailListing, EmailSummary, MessageRef, find_pdf_part
from .archival_store import ArchivalStore
from .document_analyzer import DocumentAnalyzer
from .drive import DriveClient
from .events.progress import ProgressChannel
from .gmail import GmailClient, build_discovery_query
from .ledger_writer import LedgerWriter, normalize_invoice_number
from .sheets import SheetsClient

DUPLICATE_REASON = "duplicate invoice number"
NO_PDF_REASON = "no PDF attachment"
# Messages whose headers are fetched for an email listing
EMAIL_PREVIEW_LIMIT = 20


@dataclass
class IntakeSession:
    """Collaborators bound to one credential for the lifetime of one scan"""
    source: GmailClient
    archive: ArchivalStore
    ledger: LedgerWriter
    # Normalized invoice numbers claimed by a message in this scan
    claimed: set[str] = field(default_factory=set)


SessionFactory = Callable[..., AsyncContextManager[IntakeSession]]


@asynccontextmanager
async def google_session(credential, settings) -> AsyncIterator[IntakeSession]:
    """Gmail, Drive and Sheets clients sharing one HTTP client and timeout"""
    async with httpx.AsyncClient(timeout=settings.remote_timeout_seconds) as http:
        yield IntakeSession(
            source=GmailClient(credential, http),
            archive=ArchivalStore(DriveClient(credential, http), settings.drive_root_folder_id),
            ledger=LedgerWriter(
                SheetsClient(credential, http),
                settings.ledger_sheet_id,
                range_=settings.ledger_range,
                invoice_number_range=settings.ledger_invoice_number_range,
                include_sender=settings.ledger_include_sender,
            ),
        )


class _CandidateLog:
    """
    Progress lines for one candidate. In serial mode lines go out
    immediately; in batch mode they are held and flushed together so
    concurrent candidates never interleave.
    """

    def __init__(self, channel: ProgressChannel | None, buffered: bool):
        self.channel = channel
        self.buffered = buffered
        self.lines: list[str] = []

    async def __call__(self, message: str) -> None:
        if self.buffered:
            self.lines.append(message)
        else:
            await _emit(self.channel, message)

    async def flush(self) -> None:
        for line in self.lines:
            await _emit(self.channel, line)
        self.lines.clear()


async def _emit(channel: ProgressChannel | None, message: str) -> None:
    if channel is not None:
        await channel.log(message)
    else:
        logger.info(message)


class IntakeBrowser:
    """Read-only views of the connected mailbox and archive. Needs no document model."""

    def __init__(self, auth_provider, settings, session_factory: SessionFactory = google_session):
        self.auth_provider = auth_provider
        self.settings = settings
        self.session_factory = session_factory

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[IntakeSession]:
        credential = await self.auth_provider.get_valid_credential()
        async with self.session_factory(credential, self.settings) as session:
            yield session

    async def list_emails(self, date_from: date | None = None, date_to: date | None = None) -> EmailListing:
        """Messages a scan over the same window would consider, with headers for the first few."""
        query = build_discovery_query(
            date_from, lookback_hours=self.settings.scan_default_lookback_hours, date_to=date_to
        )
        async with self._session() as session:
            refs = await session.source.search(query, max_results=self.settings.scan_max_messages)
            heads = await asyncio.gather(
                *(session.source.fetch_metadata(ref.id) for ref in refs[:EMAIL_PREVIEW_LIMIT])
            )
        return EmailListing(
            emails=[
                EmailSummary(id=ref.id, sender=head.header("From"), subject=head.header("Subject"),
                             date=head.header("Date"))
                for ref, head in zip(refs, heads)
            ],
            total=len(refs),
        )

    async def list_archive_folders(self, parent_id: str | None = None) -> list[ArchiveFolder]:
        if not (parent_id or self.settings.drive_root_folder_id):
            raise ConfigurationError("Missing configuration: GOOGLE_DRIVE_ROOT_FOLDER_ID")
        async with self._session() as session:
            return await session.archive.list_folders(parent_id)


class IntakeOrchestrator(IntakeBrowser):
    def __init__(self, auth_provider, analyzer: DocumentAnalyzer, settings,
                 session_factory: SessionFactory = google_session):
        super().__init__(auth_provider, settings, session_factory)
        self.analyzer = analyzer

    def preflight(self) -> None:
        """Fail fast before anything remote happens."""
        missing = []
        if not self.settings.drive_root_folder_id:
            missing.append("GOOGLE_DRIVE_ROOT_FOLDER_ID")
        if not self.settings.ledger_sheet_id:
            missing.append("GOOGLE_SHEET_ID")
        if missing:
            raise ConfigurationError(f"Missing configuration: {', '.join(missing)}")

    async def run(self, request: ScanRequest, channel: ProgressChannel | None = None) -> ProcessingSummary:
        """
        Run one scan.

        With a channel, progress lines stream as they happen and the scan
        ends with a `complete` event (or an `error` event, after which the
        exception is re-raised). Without one, progress only goes to the log.
        """
        try:
            self.preflight()
            async with self._session() as session:
                summary = await self._scan(session, request, channel)
        except Exception as e:
            if channel is not None:
                await channel.error(str(e) or type(e).__name__)
            if not isinstance(e, (ConfigurationError, AuthError)):
                logger.exception("Scan aborted")
            raise

        await _emit(
            channel,
            f"Scan complete: {len(summary.processed)} processed, "
            f"{len(summary.skipped)} skipped, {len(summary.errors)} errors",
        )
        if channel is not None:
            await channel.complete(summary.model_dump(mode="json", by_alias=True))
        return summary

    async def _scan(self, session: IntakeSession, request: ScanRequest,
                    channel: ProgressChannel | None) -> ProcessingSummary:
        query = build_discovery_query(request.date_from, lookback_hours=self.settings.scan_default_lookback_hours)
        await _emit(channel, f"Searching Gmail: {query}")
        refs = await session.source.search(query, max_results=self.settings.scan_max_messages)
        await _emit(channel, f"Found {len(refs)} message(s) with PDF attachments")

        batch_size = max(1, self.settings.scan_batch_size)
        results: list[PipelineResult] = []
        for start in range(0, len(refs), batch_size):
            if channel is not None and channel.cancelled:
                logger.info("Client disconnected, not scheduling remaining messages", remaining=len(refs) - start)
                break
            batch = refs[start:start + batch_size]
            if batch_size == 1:
                results.append(await self.process_message(session, batch[0], _CandidateLog(channel, buffered=False)))
                continue
            logs = [_CandidateLog(channel, buffered=True) for _ in batch]
            results.extend(await asyncio.gather(
                *(self.process_message(session, ref, log) for ref, log in zip(batch, logs))
            ))
            for log in logs:
                await log.flush()

        return ProcessingSummary.from_results(results)

    async def process_message(self, session: IntakeSession, ref: MessageRef, log: _CandidateLog) -> PipelineResult:
        """Carry one message through the pipeline; every failure becomes a result."""
        filename = None
        claim = None
        try:
            payload = await session.source.fetch_full(ref.id)
            part = find_pdf_part(payload)
            if part is None:
                await log(f"Skipped message {ref.id}: {NO_PDF_REASON}")
                return SkippedItem(message_id=ref.id, reason=NO_PDF_REASON)

            candidate = Candidate(
                message_id=ref.id,
                attachment_id=part.attachment_id,
                filename=part.filename,
                sender=payload.header("From"),
                subject=payload.header("Subject"),
            )
            filename = candidate.filename
            await log(f"Processing {filename} from {candidate.sender or 'unknown sender'}")

            candidate.data = await session.source.fetch_attachment_bytes(ref.id, candidate.attachment_id)
            analysis = await self.analyzer.analyze(candidate.data, filename)
            if not analysis.accepted:
                if analysis.failed:
                    await log(f"Error analyzing {filename}: {analysis.reason}")
                    return ErrorItem(message_id=ref.id, filename=filename, error=analysis.reason)
                await log(f"Skipped {filename}: {analysis.reason}")
                return SkippedItem(message_id=ref.id, filename=filename, reason=analysis.reason)

            invoice = analysis.invoice
            await log(
                f"Extracted invoice {invoice.invoice_number or '(no number)'} from "
                f"{invoice.supplier_name or 'unknown supplier'} (confidence {invoice.confidence}%)"
            )

            # Must happen before any remote side effect. The claim covers
            # messages of the same scan that the ledger cannot see yet.
            key = normalize_invoice_number(invoice.invoice_number)
            duplicate = key in session.claimed
            if not duplicate:
                if key:
                    claim = key
                    session.claimed.add(claim)
                duplicate = await session.ledger.exists(invoice.invoice_number)
            if duplicate:
                await log(f"Skipped {filename}: {DUPLICATE_REASON} {invoice.invoice_number}")
                return SkippedItem(message_id=ref.id, filename=filename, reason=DUPLICATE_REASON)

            location = await session.archive.archive(
                candidate.data, filename, invoice.routing, invoice.issue_date
            )
            await log(f"Archived to {location.folder_path}")

            appended = await session.ledger.append(invoice, location.web_view_link, candidate.sender)
            if appended.ok:
                await log(f"Ledger updated ({appended.updated_range})")
            else:
                await log(f"Archived {filename} but ledger append failed: {appended.error}")

            return ProcessedItem(
                message_id=ref.id,
                filename=filename,
                id=invoice.invoice_number,
                supplier=invoice.supplier_name,
                date=invoice.issue_date.isoformat() if invoice.issue_date else None,
                amount=invoice.total_amount,
                entity=invoice.routing.entity_folder_name,
                category=invoice.routing.category,
                confidence=invoice.confidence,
                file_link=location.web_view_link,
                folder_path=location.folder_path,
                ledger_error=appended.error,
            )
        except ConfigurationError:
            raise
        except Exception as e:
            if claim is not None:
                session.claimed.discard(claim)
            error = str(e) or type(e).__name__
            logger.error("Message processing failed", message_id=ref.id, filename=filename, error=error)
            await log(f"Error processing {filename or ref.id}: {error}")
            return ErrorItem(message_id=ref.id, filename=filename, error=error)
