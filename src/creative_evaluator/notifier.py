from __future__ import annotations

import asyncio
import logging

from creative_evaluator.errors import BulkSendError, SendFailure, ValidationError
from creative_evaluator.mailer import SendGridMailer, SendResult
from creative_evaluator.rendering import long_date, render
from creative_evaluator.schemas import ScoreResult

logger = logging.getLogger(__name__)


def parse_recipients(raw: str | list[str]) -> list[str]:
    """Comma-separated (or already split) addresses, trimmed, blanks dropped."""
    parts = raw.split(",") if isinstance(raw, str) else raw
    emails = [p.strip() for p in parts if p and p.strip()]
    if not emails:
        raise ValidationError("Please enter at least one email address")
    return emails


class FeedbackNotifier:
    """
    Emails scorecards. Every (recipient, creative) pair is one send and all of
    them run in parallel; failures are reported after the whole batch finishes
    and delivered mail is not recalled.
    """

    def __init__(self, mailer: SendGridMailer) -> None:
        self.mailer = mailer

    def render(self, result: ScoreResult, image: str | None = None, comments: str = "") -> str:
        return render(
            "email/feedback.html",
            creative=result,
            image=image if image is not None else result.image_data,
            comments=comments.strip(),
            generated_on=long_date(),
        )

    @staticmethod
    def subject(result: ScoreResult) -> str:
        return f"Creative Feedback Report: {result.filename}"

    async def _send_all(self, jobs: list[tuple[str, ScoreResult, str]]) -> list[tuple[ScoreResult, SendResult]]:
        sends = [asyncio.to_thread(self.mailer.send, to, self.subject(result), html) for to, result, html in jobs]
        outcomes = await asyncio.gather(*sends)
        return [(result, outcome) for (_, result, _), outcome in zip(jobs, outcomes)]

    @staticmethod
    def _raise_on_failures(outcomes: list[tuple[ScoreResult, SendResult]]) -> int:
        failures = [
            SendFailure(recipient=o.recipient, filename=r.filename, status=o.status, text=o.text)
            for r, o in outcomes
            if not o.ok
        ]
        delivered = len(outcomes) - len(failures)
        logger.info("Feedback emails: %d sent, %d failed", delivered, len(failures))
        if failures:
            raise BulkSendError(failures, delivered=delivered)
        return delivered

    async def send_feedback(
        self,
        result: ScoreResult,
        emails: str | list[str],
        image: str | None = None,
        comments: str = "",
    ) -> int:
        recipients = parse_recipients(emails)
        html = self.render(result, image, comments)
        outcomes = await self._send_all([(to, result, html) for to in recipients])
        return self._raise_on_failures(outcomes)

    async def send_bulk(
        self,
        results: list[ScoreResult],
        emails: str | list[str],
        comments: dict[int, str] | None = None,
    ) -> int:
        recipients = parse_recipients(emails)
        if not results:
            raise ValidationError("No scored creatives to share")
        comments = comments or {}
        jobs: list[tuple[str, ScoreResult, str]] = []
        for idx, result in enumerate(results):
            html = self.render(result, comments=comments.get(idx, ""))
            jobs.extend((to, result, html) for to in recipients)
        logger.info("Sending feedback for %d creative(s) to %d recipient(s)", len(results), len(recipients))
        outcomes = await self._send_all(jobs)
        return self._raise_on_failures(outcomes)
