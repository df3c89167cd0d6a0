from datetime import datetime, timedelta, timezone

import mongomock
import pytest
from fastapi.testclient import TestClient

from config import Settings
from database import Database
from images import HostedImage
from main import create_app
from schemas import Account, Item
from security import hash_password
from sms import SmsResult

PASSWORD = "Secret123"


class FakeSms:
    def __init__(self, succeed=True):
        self.succeed = succeed
        self.sent = []
        self.is_configured = True

    def send_otp(self, phone_number, code, ttl_seconds=300):
        self.sent.append((phone_number, code))
        if self.succeed:
            return SmsResult(success=True, message="OTP sent successfully")
        return SmsResult(success=False, message="Failed to send OTP", error="gateway down")

    def last_code(self, phone_number):
        return [code for number, code in self.sent if number == phone_number][-1]


class FakeImages:
    def __init__(self):
        self.uploaded = []
        self.deleted = []
        self.fail_delete = False
        self.is_configured = True

    def upload(self, image):
        n = len(self.uploaded) + 1
        hosted = HostedImage(url=f"https://img.test/items/{n}.jpg", public_id=f"coast2cart/items/{n}")
        self.uploaded.append(hosted)
        return hosted

    def delete(self, public_id):
        if self.fail_delete:
            raise RuntimeError("image host unavailable")
        self.deleted.append(public_id)
        return True

    def optimized_url(self, public_id, width=800, height=600):
        return f"https://img.test/c_limit,w_{width},h_{height}/{public_id}"


@pytest.fixture
def settings():
    return Settings(jwt_secret="test-secret", max_image_bytes=1024)


@pytest.fixture
def db():
    database = Database.from_client(mongomock.MongoClient(tz_aware=True), "coast2cart_test")
    database.ensure_indexes()
    return database


@pytest.fixture
def sms():
    return FakeSms()


@pytest.fixture
def images():
    return FakeImages()


@pytest.fixture
def app(settings, db, sms, images):
    return create_app(settings=settings, db=db, sms=sms, images=images)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def signer(app):
    return app.state.signer


@pytest.fixture
def now():
    return datetime.now(timezone.utc).replace(microsecond=0)


_counter = {"n": 0}


def make_account(db, role="buyer", verified=True, approval=None, password=PASSWORD, **overrides):
    _counter["n"] += 1
    n = _counter["n"]
    fields = dict(
        firstName="Juan",
        lastName="Dela Cruz",
        username=f"user{n}",
        email=f"user{n}@example.com",
        contactNo=f"9{n:09d}",
        address="123 Rizal Street, Dumaguete",
        dateOfBirth=datetime(1990, 5, 17, tzinfo=timezone.utc),
        password=hash_password(password),
        role=role,
        isVerified=verified,
    )
    if role == "seller":
        fields["sellerApprovalStatus"] = approval or "approved"
    fields.update(overrides)
    account_id = db.create_document("account", Account(**fields).model_dump(exclude_none=True))
    return db.get_document_by_id("account", account_id)


def make_item(db, seller, quantity=5.0, price=150.0, item_type="fish", name="Tuna", **overrides):
    fields = dict(
        seller=seller["_id"],
        itemType=item_type,
        itemName=name,
        itemPrice=price,
        quantity=quantity,
        unit="kg",
        image="https://img.test/items/seed.jpg",
        imagePublicId="coast2cart/items/seed",
        description="Fresh catch from the morning boats",
        location="Dumaguete",
    )
    fields.update(overrides)
    item_id = db.create_document("item", Item(**fields))
    return db.get_document_by_id("item", item_id)


def auth_header(signer, account):
    return {"Authorization": f"Bearer {signer.create_token(account['_id'])}"}


def signup_payload(**overrides):
    payload = {
        "firstName": "Maria",
        "lastName": "Santos",
        "username": "Maria_S",
        "dateOfBirth": "1995-03-21",
        "contactNo": "9123456789",
        "address": "45 Perdices Street, Dumaguete City",
        "email": "Maria@Example.com",
        "password": PASSWORD,
        "confirmPassword": PASSWORD,
        "role": "buyer",
    }
    payload.update(overrides)
    return payload


def ago(when, **kwargs):
    return when - timedelta(**kwargs)
