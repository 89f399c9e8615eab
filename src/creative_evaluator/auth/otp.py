from __future__ import annotations

import hmac
import logging
import secrets
from datetime import timedelta
from typing import Any, Callable

from creative_evaluator.config import settings
from creative_evaluator.datastore import OTP_TABLE, USERS_TABLE, execute, first_row, get_client, iso, now_utc, rows
from creative_evaluator.errors import InvalidCodeError, TooManyAttemptsError, UpstreamError, ValidationError
from creative_evaluator.mailer import SendGridMailer, get_mailer
from creative_evaluator.rendering import render

logger = logging.getLogger(__name__)

OTP_SUBJECT = "Your Verification Code"


def generate_code() -> str:
    return f"{secrets.randbelow(900000) + 100000}"


class OTPService:
    """
    One-time email passcodes on the `otp_codes` table.

    Lifecycle of a row: issued (verified=false) -> consumed (verified=true)
    -> login recorded (login_recorded=true). The last step is replayable from
    the row id, so a crash between consuming and recording the login is
    repaired by `replay_pending_logins`.

    Only the newest unexpired code of an address is accepted. Every verify
    call claims one attempt on that row before the code is compared.
    """

    def __init__(
        self,
        client: Any | None = None,
        mailer: SendGridMailer | None = None,
        clock: Callable = now_utc,
        ttl_minutes: int | None = None,
        max_attempts: int | None = None,
    ) -> None:
        self._client = client
        self._mailer = mailer
        self._clock = clock
        self.ttl = timedelta(minutes=ttl_minutes or settings.otp_ttl_minutes)
        self.max_attempts = max_attempts or settings.otp_max_attempts

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = get_client()
        return self._client

    @property
    def mailer(self) -> SendGridMailer:
        if self._mailer is None:
            self._mailer = get_mailer()
        return self._mailer

    def send(self, email: str) -> str:
        """Issue a code and email it. Returns the OTP row id."""
        email = _normalize_email(email)
        mailer = self.mailer
        code = generate_code()
        now = self._clock()
        row = first_row(
            execute(
                self.client.table(OTP_TABLE).insert(
                    {
                        "email": email,
                        "otp_code": code,
                        "created_at": iso(now),
                        "expires_at": iso(now + self.ttl),
                        "verified": False,
                        "attempts": 0,
                        "login_recorded": False,
                    }
                )
            )
        )
        html = render("email/otp.html", code=code, ttl_minutes=int(self.ttl.total_seconds() // 60))
        result = mailer.send(email, OTP_SUBJECT, html)
        if not result.ok:
            raise UpstreamError("Failed to send email", provider="sendgrid")
        logger.info("Issued OTP for %s", email)
        return str(row["id"]) if row and "id" in row else ""

    def _newest_pending(self, email: str) -> dict[str, Any] | None:
        return first_row(
            execute(
                self.client.table(OTP_TABLE)
                .select("*")
                .eq("email", email)
                .eq("verified", False)
                .gte("expires_at", iso(self._clock()))
                .order("created_at", desc=True)
                .limit(1)
            )
        )

    def _claim_attempt(self, row: dict[str, Any]) -> None:
        # Conditional increment: a concurrent guess that bumped the counter first
        # makes this update match nothing, and the count is re-read.
        attempts = int(row.get("attempts") or 0)
        for _ in range(self.max_attempts + 1):
            if attempts >= self.max_attempts:
                break
            claimed = rows(
                execute(
                    self.client.table(OTP_TABLE)
                    .update({"attempts": attempts + 1})
                    .eq("id", row["id"])
                    .eq("attempts", attempts)
                )
            )
            if claimed:
                return
            current = first_row(execute(self.client.table(OTP_TABLE).select("attempts").eq("id", row["id"]).limit(1)))
            if current is None:
                raise InvalidCodeError()
            attempts = int(current.get("attempts") or 0)
        logger.warning("OTP verify for %s: attempt ceiling reached", row.get("email"))
        raise TooManyAttemptsError()

    def verify(self, email: str, code: str) -> dict[str, Any]:
        """
        Consume the newest unexpired, unverified code if it equals `code` and
        record the login. Raises InvalidCodeError or TooManyAttemptsError.
        """
        email = _normalize_email(email)
        code = (code or "").strip()
        if not code:
            raise ValidationError("OTP is required")

        newest = self._newest_pending(email)
        if newest is None:
            logger.info("OTP verify for %s: no pending code", email)
            raise InvalidCodeError()

        self._claim_attempt(newest)
        if not hmac.compare_digest(str(newest.get("otp_code", "")), code):
            logger.info("OTP verify for %s: wrong code", email)
            raise InvalidCodeError()

        # Compare-and-set: only the first verifier of a row wins.
        consumed = rows(
            execute(
                self.client.table(OTP_TABLE)
                .update({"verified": True, "verified_at": iso(self._clock())})
                .eq("id", newest["id"])
                .eq("verified", False)
            )
        )
        if not consumed:
            raise InvalidCodeError()

        user = self._record_login(email, newest["id"])
        logger.info("OTP verified for %s", email)
        return user

    def _record_login(self, email: str, otp_id: Any) -> dict[str, Any]:
        stamp = iso(self._clock())
        user = first_row(
            execute(
                self.client.table(USERS_TABLE).upsert(
                    {"email": email, "last_login": stamp, "last_otp_id": otp_id}, on_conflict="email"
                )
            )
        )
        execute(self.client.table(OTP_TABLE).update({"login_recorded": True}).eq("id", otp_id))
        return user or {"email": email, "last_login": stamp}

    def replay_pending_logins(self) -> int:
        """Re-apply the user upsert for consumed codes whose login was never recorded."""
        stranded = rows(
            execute(
                self.client.table(OTP_TABLE)
                .select("id, email")
                .eq("verified", True)
                .eq("login_recorded", False)
            )
        )
        for row in stranded:
            self._record_login(row["email"], row["id"])
        if stranded:
            logger.info("Replayed %d stranded login(s)", len(stranded))
        return len(stranded)


def _normalize_email(email: str) -> str:
    email = (email or "").strip().lower()
    if not email:
        raise ValidationError("Email is required")
    if "@" not in email:
        raise ValidationError("Please enter a valid email address")
    return email
