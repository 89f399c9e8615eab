import itertools
import json
import threading
from datetime import datetime, timedelta, timezone
from io import BytesIO

import pytest
from PIL import Image

from creative_evaluator.mailer import SendResult
from creative_evaluator.providers.base import VisionCompletion


# ---------------------------------------------------------------------------
# In-memory stand-in for the supabase query builder
# ---------------------------------------------------------------------------


class FakeResponse:
    def __init__(self, data=None):
        self.data = data or []


class FakeQuery:
    def __init__(self, db, table):
        self.db = db
        self.table = table
        self.op = "select"
        self.payload = None
        self.on_conflict = None
        self.filters = []
        self.order_by = None
        self.limit_n = None

    # Chainable query methods record their usage and return self.
    def select(self, *args, **kwargs):
        self.op = "select"
        return self

    def insert(self, row):
        self.op, self.payload = "insert", row
        return self

    def update(self, values):
        self.op, self.payload = "update", values
        return self

    def upsert(self, row, on_conflict=None):
        self.op, self.payload, self.on_conflict = "upsert", row, on_conflict
        return self

    def eq(self, col, value):
        self.filters.append(lambda r: r.get(col) == value)
        return self

    def gte(self, col, value):
        self.filters.append(lambda r: r.get(col) is not None and r.get(col) >= value)
        return self

    def in_(self, col, values):
        values = list(values)
        self.filters.append(lambda r: r.get(col) in values)
        return self

    def order(self, col, desc=False):
        self.order_by = (col, desc)
        return self

    def limit(self, n):
        self.limit_n = n
        return self

    def _matching(self):
        return [r for r in self.db.tables.setdefault(self.table, []) if all(f(r) for f in self.filters)]

    def execute(self):
        self.db.calls.append((self.table, self.op))
        rows = self.db.tables.setdefault(self.table, [])
        if self.op == "insert":
            row = {"id": str(next(self.db.ids)), **self.payload}
            rows.append(row)
            return FakeResponse([dict(row)])
        if self.op == "update":
            matched = self._matching()
            for r in matched:
                r.update(self.payload)
            return FakeResponse([dict(r) for r in matched])
        if self.op == "upsert":
            keys = [k.strip() for k in (self.on_conflict or "").split(",") if k.strip()]
            existing = next(
                (r for r in rows if keys and all(r.get(k) == self.payload.get(k) for k in keys)),
                None,
            )
            if existing:
                existing.update(self.payload)
                return FakeResponse([dict(existing)])
            row = {"id": str(next(self.db.ids)), **self.payload}
            rows.append(row)
            return FakeResponse([dict(row)])

        matched = self._matching()
        if self.order_by:
            col, desc = self.order_by
            matched = sorted(matched, key=lambda r: r.get(col) or "", reverse=desc)
        if self.limit_n is not None:
            matched = matched[: self.limit_n]
        return FakeResponse([dict(r) for r in matched])


class FakeSupabase:
    def __init__(self):
        self.tables = {}
        self.calls = []
        self.ids = itertools.count(1)

    def table(self, name):
        return FakeQuery(self, name)


class FailingQuery(FakeQuery):
    def execute(self):
        self.db.calls.append((self.table, self.op))
        raise RuntimeError("connection reset by peer")


class FailingSupabase(FakeSupabase):
    """Builds queries normally; every execute() blows up like a dropped connection."""

    def table(self, name):
        return FailingQuery(self, name)


@pytest.fixture
def fake_db():
    return FakeSupabase()


# ---------------------------------------------------------------------------
# Clock, mail transport, vision model
# ---------------------------------------------------------------------------


class FakeClock:
    def __init__(self, start):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc))


class FakeMailer:
    def __init__(self, fail_for=()):
        self.fail_for = set(fail_for)
        self.sent = []
        self._lock = threading.Lock()

    def send(self, to, subject, html):
        with self._lock:
            self.sent.append({"to": to, "subject": subject, "html": html})
        if to in self.fail_for:
            return SendResult(recipient=to, status=403, ok=False, text="forbidden sender")
        return SendResult(recipient=to, status=202, ok=True)


@pytest.fixture
def fake_mailer():
    return FakeMailer()


class FakeVisionProvider:
    name = "fake"
    model = "fake-vision-1"

    def __init__(self, reply):
        self.reply = reply if isinstance(reply, str) else json.dumps(reply)
        self.calls = []

    async def complete_json(self, system_prompt, text, image_urls):
        self.calls.append({"system_prompt": system_prompt, "text": text, "image_urls": list(image_urls)})
        return VisionCompletion(text=self.reply, provider=self.name, model=self.model)


# ---------------------------------------------------------------------------
# Sample data
# ---------------------------------------------------------------------------


def png_bytes(color=(200, 30, 30), size=(16, 16)):
    buf = BytesIO()
    Image.new("RGB", size, color).save(buf, format="PNG")
    return buf.getvalue()


def jpeg_bytes(color=(30, 30, 200), size=(16, 16)):
    buf = BytesIO()
    Image.new("RGB", size, color).save(buf, format="JPEG")
    return buf.getvalue()


BRAND_SCORES = {
    "Logo usage": 5,
    "Color palette": 4,
    "Typography": 4,
    "Imagery style": 5,
    "Tone of voice": 4,
    "Tagline / messaging alignment": 5,
    "Audience fit": 4,
    "Core message clarity": 4,
}

ECOMMERCE_SCORES = {
    "Product visibility & dominance": 5,
    "Product accuracy": 4,
    "Product angle & presentation": 4,
    "Usage / context clarity": 5,
    "CTA integration & prominence": 4,
}


def model_result(filename, creative_id=None, ecommerce=False, **overrides):
    item = {
        "filename": filename,
        "overall_score": 35 + (22 if ecommerce else 0),
        "brand_subtotal": 35,
        "brand_scores": dict(BRAND_SCORES),
        "strengths": [f"{filename} keeps the logo intact"],
        "risks": [f"{filename} headline is small"],
        "recommendations": ["Increase headline size to 24pt"],
    }
    if creative_id:
        item["creative_id"] = creative_id
    if ecommerce:
        item["ecommerce_subtotal"] = 22
        item["ecommerce_scores"] = dict(ECOMMERCE_SCORES)
    item.update(overrides)
    return item


def bip_json(**overrides):
    profile = {
        "logoFiles": [{"name": "logo.png", "data": "data:image/png;base64,TE9HTw=="}],
        "toneOfVoiceMode": "text",
        "toneOfVoiceText": "Warm, direct, no jargon",
        "toneOfVoiceImages": [],
        "preApprovedCreatives": [{"name": "approved.png", "data": "data:image/png;base64,QVBQUk9WRUQ="}],
        "targetAudience": "Urban parents aged 28-40",
        "offeringDescription": "Organic baby food subscription",
    }
    profile.update(overrides)
    return json.dumps(profile)
