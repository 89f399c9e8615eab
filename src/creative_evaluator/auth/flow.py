from __future__ import annotations

import logging
from dataclasses import dataclass, field

from creative_evaluator.auth.otp import OTPService
from creative_evaluator.errors import CreativeEvaluatorError

logger = logging.getLogger(__name__)

AWAITING_EMAIL = "awaiting-email"
AWAITING_CODE = "awaiting-code"


@dataclass
class AuthFlow:
    """Two-step email login: send a code, then verify it."""

    state: str = AWAITING_EMAIL
    email: str = ""
    error: str = ""
    authenticated_email: str | None = None
    service: OTPService = field(default_factory=OTPService, repr=False)

    @property
    def authenticated(self) -> bool:
        return self.authenticated_email is not None

    def send_code(self, email: str) -> None:
        self.error = ""
        try:
            self.service.send(email)
        except CreativeEvaluatorError as exc:
            self.error = exc.message
            raise
        self.email = email.strip().lower()
        self.state = AWAITING_CODE

    def verify(self, code: str) -> str:
        if self.state != AWAITING_CODE:
            raise RuntimeError("verify called before a code was sent")
        self.error = ""
        try:
            self.service.verify(self.email, code)
        except CreativeEvaluatorError as exc:
            self.error = exc.message
            raise
        self.authenticated_email = self.email
        return self.email

    def use_different_email(self) -> None:
        self.state = AWAITING_EMAIL
        self.email = ""
        self.error = ""
