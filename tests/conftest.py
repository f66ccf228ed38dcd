from pathlib import Path
from typing import Any, Callable, Dict, List, Tuple

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from jose import jwt

from billing_service.core.config import Settings
from billing_service.database import Database
from billing_service.errors import DeliveryError, RenderError
from billing_service.main import create_app

TEST_SECRET_KEY = "test-secret-key"
TEST_ALGORITHM = "HS256"
ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "admin-password"


class FakePDFGenerator:
    """Writes a small placeholder file instead of rendering through WeasyPrint"""

    def __init__(self, output_dir: Path):
        self.output_dir = output_dir
        self.fail = False
        self.generated: List[str] = []

    def pdf_path(self, billing_number: str) -> Path:
        return self.output_dir / f"{billing_number}.pdf"

    async def generate_invoice(self, billing: Any) -> str:
        if self.fail:
            raise RenderError("PDF generation failed: renderer unavailable")
        self.output_dir.mkdir(parents=True, exist_ok=True)
        path = self.pdf_path(billing.billing_number)
        path.write_bytes(b"%PDF-1.4 " + billing.billing_number.encode())
        self.generated.append(billing.billing_number)
        return str(path)

    def pdf_exists(self, billing_number: str) -> bool:
        return self.pdf_path(billing_number).is_file()

    def delete_pdf(self, billing_number: str) -> bool:
        path = self.pdf_path(billing_number)
        if not path.is_file():
            return False
        path.unlink()
        return True


class FakeEmailService:
    def __init__(self):
        self.fail = False
        self.sent: List[Tuple[str, str]] = []
        self.test_emails: List[str] = []

    async def send_invoice(self, billing: Any, recipient: str) -> None:
        if self.fail:
            raise DeliveryError("Failed to send email: SMTP server unavailable")
        self.sent.append((billing.billing_number, recipient))

    async def test_connection(self) -> bool:
        if self.fail:
            raise DeliveryError("SMTP connection failed: connection refused")
        return True

    async def send_test_email(self, recipient: str) -> None:
        if self.fail:
            raise DeliveryError("Failed to send email: SMTP server unavailable")
        self.test_emails.append(recipient)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'billing.db'}",
        SECRET_KEY=TEST_SECRET_KEY,
        JWT_ALGORITHM=TEST_ALGORITHM,
        BOOTSTRAP_ADMIN=True,
        ADMIN_EMAIL=ADMIN_EMAIL,
        ADMIN_PASSWORD=ADMIN_PASSWORD,
        PDF_OUTPUT_DIR=str(tmp_path / "pdfs"),
        BILLING_NUMBER_PREFIX="SEW",
        LOG_LEVEL="WARNING",
    )


@pytest.fixture
def pdf_generator(tmp_path: Path) -> FakePDFGenerator:
    return FakePDFGenerator(tmp_path / "pdfs")


@pytest.fixture
def email_service() -> FakeEmailService:
    return FakeEmailService()


@pytest.fixture
def client(settings: Settings, pdf_generator: FakePDFGenerator, email_service: FakeEmailService):
    app = create_app(settings, pdf_generator=pdf_generator, email_service=email_service)
    with TestClient(app) as test_client:
        yield test_client


@pytest_asyncio.fixture
async def database(tmp_path: Path):
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'unit.db'}")
    await db.create_all()
    yield db
    await db.dispose()


@pytest_asyncio.fixture
async def db_session(database: Database):
    async with database.session() as session:
        yield session


@pytest.fixture
def make_headers() -> Callable[..., Dict[str, str]]:
    def _make_headers(user_id: str = "user-1", email: str = "user1@example.com", role: str = "user") -> Dict[str, str]:
        token = jwt.encode({"sub": user_id, "email": email, "role": role}, TEST_SECRET_KEY, algorithm=TEST_ALGORITHM)
        return {"Authorization": f"Bearer {token}"}

    return _make_headers


@pytest.fixture
def admin_headers(client: TestClient) -> Dict[str, str]:
    """Headers for the bootstrapped admin, signed in through the API"""
    response = client.post("/api/auth/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['data']['token']}"}


@pytest.fixture
def billing_payload() -> Callable[..., Dict[str, Any]]:
    def _billing_payload(**overrides: Any) -> Dict[str, Any]:
        payload = {
            "billingDate": "2026-01-15",
            "deliveryReceiptNumber": "DR-1001",
            "companyName": "Acme Garments Inc.",
            "address": "123 Rizal Avenue, Santa Cruz, Manila",
            "contactNumber": "+63 912 345 6789",
            "attentionPerson": "Maria Santos",
            "clientEmail": "accounts@acme.example.com",
            "items": [{"id": "1", "quantity": 10, "description": "Polo shirts", "unitPrice": 50.00}],
            "discount": 25.00,
        }
        payload.update(overrides)
        return payload

    return _billing_payload
